"""Spawns the child process with both output streams connected to pipes."""

from __future__ import annotations

import io
import logging
import os
import subprocess
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import BinaryIO, Protocol, cast

from syscmd.process.argv import SpawnSpec

# Shell conventions for "command not found" and "found but not executable".
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126


class Waiter(Protocol):
    """Anything that can report the terminal status of a process."""

    def wait(self) -> int: ...


class _SpawnFailure:
    """Stands in for a process that could not be created."""

    def __init__(self, returncode: int) -> None:
        self.returncode = returncode
        self.pid: int | None = None

    def wait(self) -> int:
        return self.returncode


@dataclass
class LaunchedProcess:
    """Read ends of the child's output pipes and the handle to wait on.

    ``waiter`` must not be consulted before both streams reached end-of-stream.
    """

    stdout: BinaryIO
    stderr: BinaryIO
    waiter: Waiter
    pid: int | None = None
    stdin_writer: threading.Thread | None = None

    @property
    def spawned(self) -> bool:
        return self.pid is not None


class ProcessLauncher:
    """Creates child processes without any shell involvement."""

    _logger = logging.getLogger(__name__)

    def __init__(self, *, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def spawn(self, spawn: SpawnSpec, *, stdin_data: bytes | None = None) -> LaunchedProcess:
        """Starts ``spawn.argv``.

        A missing or non-executable program does not raise: it yields a
        launched process whose stderr carries the reason and whose status is
        127 (not found) or 126 (cannot execute).
        """

        env = {k: v for k, v in self._environ.items() if k not in spawn.unset_env}

        try:
            proc = subprocess.Popen(
                list(spawn.argv),
                stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=spawn.cwd,
                env=env,
                shell=False,
            )
        except OSError as exc:
            return self._failed_launch(spawn, exc)

        writer: threading.Thread | None = None
        if stdin_data is not None:
            writer = threading.Thread(
                target=self._feed_stdin,
                args=(cast(BinaryIO, proc.stdin), stdin_data),
                name=f"syscmd-stdin-{proc.pid}",
                daemon=True,
            )
            writer.start()
        return LaunchedProcess(
            stdout=cast(BinaryIO, proc.stdout),
            stderr=cast(BinaryIO, proc.stderr),
            waiter=proc,
            pid=proc.pid,
            stdin_writer=writer,
        )

    def _failed_launch(self, spawn: SpawnSpec, exc: OSError) -> LaunchedProcess:
        returncode = EXIT_NOT_FOUND if isinstance(exc, FileNotFoundError) else EXIT_NOT_EXECUTABLE
        reason = exc.strerror or str(exc)
        # Popen reports the missing working directory, not the executable, when cwd is bad.
        subject = os.fsdecode(exc.filename) if exc.filename else spawn.argv[0]
        self._logger.warning(
            "Spawn failed: executable=%s path=%s reason=%s exit_status=%s",
            spawn.argv[0],
            subject,
            reason,
            returncode,
        )
        message = f"{subject}: {reason}\n".encode("utf-8", errors="replace")
        return LaunchedProcess(
            stdout=io.BytesIO(b""),
            stderr=io.BytesIO(message),
            waiter=_SpawnFailure(returncode),
        )

    def _feed_stdin(self, stdin: BinaryIO, data: bytes) -> None:
        try:
            stdin.write(data)
        except BrokenPipeError:
            # Child exited or closed its input early.
            self._logger.debug("Child closed stdin before all input was written.")
        except OSError as exc:
            self._logger.warning("Writing to child stdin failed: error=%s", exc)
        finally:
            try:
                stdin.close()
            except BrokenPipeError:
                pass
            except OSError as exc:
                self._logger.debug("Closing child stdin failed: error=%s", exc)
