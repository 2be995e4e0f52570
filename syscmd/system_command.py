"""Runs external commands safely and observably.

Example:
    result = system_command("ls", args=["-l", "/tmp"])
    if result.success:
        ...
    system_command_checked("curl", args=["--user", f"me:{token}"], secrets=[token])

``system_command`` always returns a ``CommandResult``. ``system_command_checked``
raises ``CommandError`` (with secrets masked) when the command fails.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import replace

from syscmd.core.config import RunnerSettings
from syscmd.process.argv import ArgvBuilder, CommandSpec
from syscmd.process.launcher import ProcessLauncher
from syscmd.process.pump import OutputSink, StandardStreamSink, StreamPump
from syscmd.process.redaction import Redactor
from syscmd.process.result import CommandResult, ResultBuilder


class SystemCommand:
    """Executes one ``CommandSpec`` to completion."""

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        settings: RunnerSettings | None = None,
        environ: Mapping[str, str] | None = None,
        stdout_sink: OutputSink | None = None,
        stderr_sink: OutputSink | None = None,
    ) -> None:
        self._settings = settings or RunnerSettings()
        self._environ = os.environ if environ is None else environ
        self._stdout_sink = stdout_sink or StandardStreamSink("stdout")
        self._stderr_sink = stderr_sink or StandardStreamSink("stderr")
        self._argv_builder = ArgvBuilder(settings=self._settings, environ=self._environ)
        self._launcher = ProcessLauncher(environ=self._environ)

    def run(self, spec: CommandSpec) -> CommandResult:
        """Runs ``spec``; raises only if ``spec.must_succeed`` is set."""

        return self._execute(spec, must_succeed=spec.must_succeed)

    def run_checked(self, spec: CommandSpec) -> CommandResult:
        """Runs ``spec`` and raises ``CommandError`` unless it succeeds."""

        return self._execute(spec, must_succeed=True)

    def _execute(self, spec: CommandSpec, *, must_succeed: bool) -> CommandResult:
        if spec.must_succeed != must_succeed:
            spec = replace(spec, must_succeed=must_succeed)

        spawn = self._argv_builder.build(spec)
        redactor = Redactor.from_settings(
            spec.secrets, settings=self._settings, environ=self._environ
        )
        command_line = redactor.redact(spawn.command_line)
        if spec.verbose or spec.debug:
            self._stdout_sink.write(f"{command_line}\n".encode("utf-8"))
        self._logger.log(
            logging.INFO if spec.verbose else logging.DEBUG,
            "Command started: command=%s cwd=%s",
            command_line,
            spawn.cwd,
        )

        start_time = time.monotonic()
        launched = self._launcher.spawn(spawn, stdin_data=_encode_input(spec.input))
        chunk_size = self._settings.read_chunk_size
        stdout_pump = StreamPump(
            name="stdout",
            source=launched.stdout,
            redactor=redactor,
            sink=self._stdout_sink if spec.print_stdout else None,
            chunk_size=chunk_size,
        )
        stderr_pump = StreamPump(
            name="stderr",
            source=launched.stderr,
            redactor=redactor,
            sink=self._stderr_sink if spec.print_stderr else None,
            chunk_size=chunk_size,
        )
        stdout_pump.start()
        stderr_pump.start()

        builder = ResultBuilder(settings=self._settings, redactor=redactor)
        try:
            return builder.finish(launched, stdout_pump, stderr_pump, spec=spec, spawn=spawn)
        finally:
            self._logger.debug(
                "Command finished: command=%s elapsed_seconds=%.3f",
                command_line,
                time.monotonic() - start_time,
            )


def system_command(
    executable: str | os.PathLike[str],
    *,
    args: Sequence[object] = (),
    env: Mapping[str, object | None] | None = None,
    sudo: bool = False,
    must_succeed: bool = False,
    print_stdout: bool = False,
    print_stderr: bool = True,
    verbose: bool = False,
    debug: bool = False,
    secrets: Sequence[str] = (),
    cwd: str | os.PathLike[str] | None = None,
    input: str | Sequence[str] | None = None,
    settings: RunnerSettings | None = None,
    stdout_sink: OutputSink | None = None,
    stderr_sink: OutputSink | None = None,
) -> CommandResult:
    """Runs a command and returns its result, even when it fails.

    Raises:
        ArgumentError: If the command cannot be constructed.
        CommandError: Only if ``must_succeed`` is set and the command failed.
    """

    spec = CommandSpec(
        executable=executable,
        args=args,
        env=env or {},
        sudo=sudo,
        must_succeed=must_succeed,
        print_stdout=print_stdout,
        print_stderr=print_stderr,
        verbose=verbose,
        debug=debug,
        secrets=secrets,
        cwd=cwd,
        input=input,
    )
    runner = SystemCommand(settings=settings, stdout_sink=stdout_sink, stderr_sink=stderr_sink)
    return runner.run(spec)


def system_command_checked(
    executable: str | os.PathLike[str],
    **options: object,
) -> CommandResult:
    """Same as ``system_command`` with ``must_succeed`` forced on."""

    options["must_succeed"] = True
    return system_command(executable, **options)  # type: ignore[arg-type]


def _encode_input(value: str | Sequence[str] | None) -> bytes | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.encode("utf-8")
    return "".join(value).encode("utf-8")
