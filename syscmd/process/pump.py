"""Concurrent draining of the child's output pipes.

Each stream gets its own thread. Draining both from a single loop would let a
child that fills one pipe block forever while the parent waits on the other.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import BinaryIO, Literal, Protocol

from syscmd.process.redaction import Redactor


class OutputSink(Protocol):
    """Destination for live-echoed output."""

    def write(self, data: bytes) -> None: ...


class StandardStreamSink:
    """Writes to ``sys.stdout`` or ``sys.stderr``.

    The stream is looked up on every write so that replaced streams (e.g.
    under test capture) are honoured.
    """

    def __init__(self, name: Literal["stdout", "stderr"]) -> None:
        self._name = name

    def write(self, data: bytes) -> None:
        stream = getattr(sys, self._name)
        buffer = getattr(stream, "buffer", None)
        if buffer is None:
            stream.write(data.decode("utf-8", errors="replace"))
        else:
            stream.flush()
            buffer.write(data)
            buffer.flush()
        stream.flush()


class BufferSink:
    """Collects echoed bytes in memory."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._lock = threading.Lock()

    def write(self, data: bytes) -> None:
        with self._lock:
            self._chunks.append(bytes(data))

    def getvalue(self) -> bytes:
        with self._lock:
            return b"".join(self._chunks)

    def text(self) -> str:
        return self.getvalue().decode("utf-8", errors="replace")


class StreamPump:
    """Drains one pipe to end-of-stream.

    Every chunk is appended verbatim to the pump's buffer. When a sink is
    given, the chunk is also redacted and echoed as read, without any line
    reflowing, so carriage-return progress output is passed through intact.
    """

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        name: str,
        source: BinaryIO,
        redactor: Redactor,
        sink: OutputSink | None = None,
        chunk_size: int = 65536,
    ) -> None:
        self._name = name
        self._source = source
        self._redactor = redactor
        self._sink = sink
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._error: BaseException | None = None
        self._thread: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self._name

    def start(self) -> None:
        """Starts draining on a background thread."""

        if self._thread is not None:
            raise RuntimeError(f"{self._name} pump already started.")
        self._thread = threading.Thread(
            target=self._run,
            name=f"syscmd-{self._name}-pump",
            daemon=True,
        )
        self._thread.start()

    def join(self) -> bytes:
        """Waits for end-of-stream and returns everything read."""

        if self._thread is None:
            raise RuntimeError(f"{self._name} pump was never started.")
        self._thread.join()
        if self._error is not None:
            raise self._error
        return bytes(self._buffer)

    def drain(self) -> bytes:
        """Drains on the calling thread and returns everything read."""

        self._run()
        if self._error is not None:
            raise self._error
        return bytes(self._buffer)

    def _run(self) -> None:
        try:
            while True:
                try:
                    chunk = self._read()
                except (OSError, ValueError) as exc:
                    # Keep what was read so far and treat the failure as end-of-stream.
                    self._logger.warning(
                        "Reading %s failed, treating as end of stream: error=%s bytes_read=%s",
                        self._name,
                        exc,
                        len(self._buffer),
                    )
                    break
                if not chunk:
                    break
                self._buffer.extend(chunk)
                self._echo(chunk)
        except Exception as exc:  # noqa: BLE001
            self._error = exc
        finally:
            self._close_source()

    def _read(self) -> bytes:
        read1 = getattr(self._source, "read1", None)
        if read1 is not None:
            return read1(self._chunk_size)
        return self._source.read(self._chunk_size)

    def _echo(self, chunk: bytes) -> None:
        if self._sink is None:
            return
        try:
            self._sink.write(self._redactor.redact_bytes(chunk))
        except (OSError, ValueError) as exc:
            self._logger.warning("Echoing %s failed, echo disabled: error=%s", self._name, exc)
            self._sink = None

    def _close_source(self) -> None:
        try:
            self._source.close()
        except OSError as exc:
            self._logger.debug("Closing %s failed: error=%s", self._name, exc)
