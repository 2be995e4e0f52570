"""Command results and the error raised when success was required."""

from __future__ import annotations

import logging
import signal
from dataclasses import dataclass, field

from syscmd.core.config import RunnerSettings
from syscmd.process.argv import CommandSpec, SpawnSpec
from syscmd.process.launcher import LaunchedProcess
from syscmd.process.pump import StreamPump
from syscmd.process.redaction import Redactor


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


class CommandError(RuntimeError):
    """Raised when a command that had to succeed did not.

    All attributes hold redacted text.
    """

    def __init__(
        self,
        *,
        command: str,
        exit_status: int | None,
        term_signal: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        if term_signal is not None:
            status = f"was terminated by uncaught signal {signal_name(term_signal)}"
        else:
            status = f"exited with {exit_status}"
        message = f"Failure while executing; `{command}` {status}."
        output = stdout + stderr
        if output.strip():
            message += " Here's the output:\n" + output
            if not message.endswith("\n"):
                message += "\n"
        super().__init__(message)
        self.command = command
        self.exit_status = exit_status
        self.term_signal = term_signal
        self.stdout = stdout
        self.stderr = stderr


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one command.

    Attributes:
        command: The argv that was spawned.
        stdout: Full standard output. Bytes that are not valid UTF-8 are kept as
            surrogate escapes, so ``stdout_bytes`` returns exactly what was read.
        stderr: Full standard error, decoded the same way.
        exit_status: Exit code, or None when terminated by a signal.
        term_signal: Signal number that terminated the process, if any.
    """

    command: tuple[str, ...]
    stdout: str
    stderr: str
    exit_status: int | None
    term_signal: int | None = None
    redactor: Redactor | None = field(default=None, repr=False, compare=False)

    @property
    def success(self) -> bool:
        return self.exit_status == 0

    @property
    def stdout_bytes(self) -> bytes:
        return self.stdout.encode("utf-8", errors="surrogateescape")

    @property
    def stderr_bytes(self) -> bytes:
        return self.stderr.encode("utf-8", errors="surrogateescape")

    @property
    def merged_output(self) -> str:
        return self.stdout + self.stderr

    def stdout_lines(self) -> list[str]:
        return self.stdout.splitlines()

    def stderr_lines(self) -> list[str]:
        return self.stderr.splitlines()

    def assert_success(self) -> CommandResult:
        """Returns self, or raises ``CommandError`` if the command failed."""

        if self.success:
            return self
        redactor = self.redactor or Redactor(environ={})
        raise CommandError(
            command=redactor.redact(SpawnSpec(argv=self.command).command_line),
            exit_status=self.exit_status,
            term_signal=self.term_signal,
            stdout=redactor.redact(_printable(self.stdout)),
            stderr=redactor.redact(_printable(self.stderr)),
        )


class ResultBuilder:
    """Joins the pumps, then the process, and produces the outcome."""

    _logger = logging.getLogger(__name__)

    def __init__(self, *, settings: RunnerSettings, redactor: Redactor) -> None:
        self._settings = settings
        self._redactor = redactor

    def finish(
        self,
        launched: LaunchedProcess,
        stdout_pump: StreamPump,
        stderr_pump: StreamPump,
        *,
        spec: CommandSpec,
        spawn: SpawnSpec,
    ) -> CommandResult:
        """Builds the result once both streams are drained.

        Raises:
            CommandError: If ``spec.must_succeed`` and the command failed.
        """

        # Both pumps must see end-of-stream before the process is reaped.
        errors: list[BaseException] = []
        buffers: list[bytes] = []
        for pump in (stdout_pump, stderr_pump):
            try:
                buffers.append(pump.join())
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
                buffers.append(b"")
        if launched.stdin_writer is not None:
            launched.stdin_writer.join()
        returncode = launched.waiter.wait()
        if errors:
            raise errors[0]

        stdout = buffers[0].decode("utf-8", errors="surrogateescape")
        stderr = buffers[1].decode("utf-8", errors="surrogateescape")
        if self._settings.redact_captured_output:
            stdout = self._redactor.redact(stdout)
            stderr = self._redactor.redact(stderr)

        exit_status: int | None = returncode
        term_signal: int | None = None
        if returncode < 0:
            exit_status = None
            term_signal = -returncode

        result = CommandResult(
            command=spawn.argv,
            stdout=stdout,
            stderr=stderr,
            exit_status=exit_status,
            term_signal=term_signal,
            redactor=self._redactor,
        )
        self._logger.debug(
            "Command result: exit_status=%s term_signal=%s stdout_bytes=%s stderr_bytes=%s",
            exit_status,
            term_signal,
            len(buffers[0]),
            len(buffers[1]),
        )
        if spec.must_succeed:
            result.assert_success()
        return result


def _printable(text: str) -> str:
    # Surrogate escapes cannot be written to a terminal; show them as U+FFFD.
    return text.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace")
