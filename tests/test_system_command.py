from __future__ import annotations

import re
from pathlib import Path

import pytest

from syscmd.core.config import RunnerSettings
from syscmd.process.argv import ArgumentError, CommandSpec
from syscmd.process.pump import BufferSink
from syscmd.process.result import CommandError
from syscmd.system_command import SystemCommand, system_command, system_command_checked

_INTERLEAVED = "for i in 1 3 5; do echo $i; echo $(($i + 1)) >&2; done"


@pytest.fixture
def settings() -> RunnerSettings:
    return RunnerSettings(_env_file=None)


@pytest.fixture
def sinks() -> tuple[BufferSink, BufferSink]:
    return BufferSink(), BufferSink()


def _run(
    executable: str | Path,
    sinks: tuple[BufferSink, BufferSink],
    settings: RunnerSettings,
    **options,
):
    return system_command(
        executable,
        settings=settings,
        stdout_sink=sinks[0],
        stderr_sink=sinks[1],
        **options,
    )


def test_given_environment_variables_are_visible_in_order(sinks, settings) -> None:
    result = _run(
        "env",
        sinks,
        settings,
        args=["sh", "-c", 'printf "%s" "${A?}" "${B?}" "${C?}"'],
        env={"A": "1", "B": "2", "C": "3"},
        must_succeed=True,
    )
    assert result.stdout == "123"
    assert result.command[1:4] == ("A=1", "B=2", "C=3")


def test_unset_variable_is_not_visible_to_child(sinks, settings, monkeypatch) -> None:
    monkeypatch.setenv("C", "inherited")
    with pytest.raises(CommandError, match="C: parameter"):
        _run(
            "env",
            sinks,
            settings,
            args=["sh", "-c", 'printf "%s" "${A?}" "${B?}" "${C?}"'],
            env={"A": "1", "B": "2", "C": None},
            must_succeed=True,
        )


def test_exit_code_zero_is_success(sinks, settings) -> None:
    result = _run("true", sinks, settings)
    assert result.success is True
    assert result.exit_status == 0
    assert result.term_signal is None


def test_exit_code_one_is_returned_by_non_raising_form(sinks, settings) -> None:
    result = _run("false", sinks, settings)
    assert result.success is False
    assert result.exit_status == 1


def test_exit_code_one_raises_from_checked_form(sinks, settings) -> None:
    with pytest.raises(CommandError) as excinfo:
        system_command_checked(
            "false", settings=settings, stdout_sink=sinks[0], stderr_sink=sinks[1]
        )
    assert excinfo.value.exit_status == 1
    assert "exited with 1" in str(excinfo.value)


def test_signal_termination_is_failure(sinks, settings) -> None:
    result = _run("sh", sinks, settings, args=["-c", "kill -KILL $$"])
    assert result.success is False
    assert result.exit_status is None
    assert result.term_signal == 9
    with pytest.raises(CommandError, match="SIGKILL"):
        result.assert_success()


def test_given_a_pathname(sinks, settings, tmp_path: Path) -> None:
    (tmp_path / "somefile").touch()
    result = _run("/bin/ls", sinks, settings, args=[tmp_path])
    assert result.success is True
    assert result.stdout == "somefile\n"


def test_default_options_echo_only_stderr(sinks, settings) -> None:
    result = _run("sh", sinks, settings, args=["-c", _INTERLEAVED])
    assert result.success is True
    assert result.stdout == "1\n3\n5\n"
    assert result.stderr == "2\n4\n6\n"
    assert sinks[0].text() == ""
    assert sinks[1].text() == "2\n4\n6\n"


def test_print_stdout_echoes_both_streams(sinks, settings) -> None:
    result = _run("sh", sinks, settings, args=["-c", _INTERLEAVED], print_stdout=True)
    assert (result.stdout, result.stderr) == ("1\n3\n5\n", "2\n4\n6\n")
    assert sinks[0].text() == "1\n3\n5\n"
    assert sinks[1].text() == "2\n4\n6\n"


def test_without_print_stderr_echoes_nothing(sinks, settings) -> None:
    result = _run("sh", sinks, settings, args=["-c", _INTERLEAVED], print_stderr=False)
    assert (result.stdout, result.stderr) == ("1\n3\n5\n", "2\n4\n6\n")
    assert sinks[0].text() == ""
    assert sinks[1].text() == ""


def test_print_stdout_without_print_stderr_echoes_only_stdout(sinks, settings) -> None:
    result = _run(
        "sh",
        sinks,
        settings,
        args=["-c", _INTERLEAVED],
        print_stdout=True,
        print_stderr=False,
    )
    assert (result.stdout, result.stderr) == ("1\n3\n5\n", "2\n4\n6\n")
    assert sinks[0].text() == "1\n3\n5\n"
    assert sinks[1].text() == ""


def test_very_long_output_on_both_streams_does_not_deadlock(sinks, settings) -> None:
    script = 'i=1; while [ "$i" -le 100000 ]; do echo $i; echo $(($i + 1)) >&2; i=$(($i + 2)); done'
    result = _run("sh", sinks, settings, args=["-c", script], print_stderr=False)
    assert result.success is True
    stdout_lines = result.stdout_lines()
    stderr_lines = result.stderr_lines()
    assert len(stdout_lines) == len(stderr_lines) == 50000
    assert stdout_lines[:2] == ["1", "3"] and stdout_lines[-1] == "99999"
    assert stderr_lines[:2] == ["2", "4"] and stderr_lines[-1] == "100000"


def test_invalid_variable_name_raises_argument_error(sinks, settings) -> None:
    with pytest.raises(ArgumentError, match="variable name"):
        _run("true", sinks, settings, env={"1ABC": True})


def test_looks_for_executables_in_a_custom_path(sinks, settings, tmp_path: Path) -> None:
    tool = tmp_path / "tool"
    tool.write_text("#!/bin/sh\necho Hello, world!\n", encoding="utf-8")
    tool.chmod(0o755)

    result = _run("tool", sinks, settings, env={"PATH": tmp_path})
    assert "Hello, world!" in result.stdout


def test_missing_executable_does_not_raise(sinks, settings) -> None:
    result = _run("non_existent_executable", sinks, settings)
    assert result.success is False
    assert result.exit_status == 127
    assert "non_existent_executable" in sinks[1].text()


def test_missing_executable_raises_from_checked_form(sinks, settings) -> None:
    with pytest.raises(CommandError) as excinfo:
        system_command_checked(
            "non_existent_executable",
            settings=settings,
            stdout_sink=sinks[0],
            stderr_sink=sinks[1],
        )
    assert excinfo.value.exit_status == 127
    assert "non_existent_executable" in str(excinfo.value)


def test_non_utf8_output_is_captured_exactly(sinks, settings) -> None:
    result = _run("sh", sinks, settings, args=["-c", "printf '\\377\\376ok'"])
    assert result.success is True
    assert result.stdout_bytes == b"\xff\xfeok"


def test_injected_environment_reaches_the_child(sinks, settings, monkeypatch) -> None:
    monkeypatch.setenv("REAL_ONLY", "leaked")
    runner = SystemCommand(
        settings=settings,
        environ={"PATH": "/usr/bin:/bin", "INJECTED": "yes"},
        stdout_sink=sinks[0],
        stderr_sink=sinks[1],
    )
    result = runner.run(CommandSpec(executable="env"))
    assert "INJECTED=yes" in result.stdout_lines()
    assert "REAL_ONLY=leaked" not in result.stdout


def test_stderr_starting_with_carriage_return_is_not_reformatted(sinks, settings) -> None:
    progress = "\r###################                                                       27.6%"
    _run("sh", sinks, settings, args=["-c", 'printf "\\r%s" "$1" 1>&2', "sh", progress[1:]])
    assert sinks[1].text() == progress


def test_executable_with_spaces_is_not_a_shell_line(sinks, settings, tmp_path: Path) -> None:
    executable = tmp_path / "App Uninstaller"
    executable.write_text("#!/bin/sh\ntrue\n", encoding="utf-8")
    executable.chmod(0o755)

    assert _run(executable, sinks, settings).success is True


def test_arguments_with_secrets_are_masked(sinks, settings) -> None:
    with pytest.raises(CommandError) as excinfo:
        system_command_checked(
            "sh",
            args=["-c", 'echo "$1"; exit 3', "sh", "username:hunter2"],
            verbose=True,
            secrets=["hunter2"],
            settings=settings,
            stdout_sink=sinks[0],
            stderr_sink=sinks[1],
        )
    message = str(excinfo.value)
    assert "username:******" in message
    assert "hunter2" not in message
    assert "username:******" in sinks[0].text()
    assert "hunter2" not in sinks[0].text()


def test_secrets_set_by_environment_are_masked(sinks, settings, monkeypatch) -> None:
    monkeypatch.setenv("PASSWORD", "hunter2")
    with pytest.raises(CommandError) as excinfo:
        system_command_checked(
            "sh",
            args=["-c", "exit 2", "sh", "--user", "username:hunter2"],
            verbose=True,
            settings=settings,
            stdout_sink=sinks[0],
            stderr_sink=sinks[1],
        )
    assert re.search(re.escape("username:******"), str(excinfo.value))
    assert "username:******" in sinks[0].text()


def test_captured_buffers_stay_raw_by_default(sinks, settings) -> None:
    result = _run("sh", sinks, settings, args=["-c", "echo hunter2 >&2"], secrets=["hunter2"])
    assert result.stderr == "hunter2\n"
    assert sinks[1].text() == "******\n"


def test_captured_buffers_can_be_redacted(sinks) -> None:
    settings = RunnerSettings(_env_file=None, redact_captured_output=True)
    result = _run("sh", sinks, settings, args=["-c", "echo hunter2"], secrets=["hunter2"])
    assert result.stdout == "******\n"


def test_input_is_written_to_stdin(sinks, settings) -> None:
    result = _run("cat", sinks, settings, input=["a\n", "b\n"])
    assert result.stdout == "a\nb\n"


def test_cwd_is_used_as_working_directory(sinks, settings, tmp_path: Path) -> None:
    result = _run("pwd", sinks, settings, cwd=tmp_path)
    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()


def test_system_command_run_respects_must_succeed_on_spec(sinks, settings) -> None:
    runner = SystemCommand(settings=settings, stdout_sink=sinks[0], stderr_sink=sinks[1])
    assert runner.run(CommandSpec(executable="false")).success is False
    with pytest.raises(CommandError):
        runner.run(CommandSpec(executable="false", must_succeed=True))
    with pytest.raises(CommandError):
        runner.run_checked(CommandSpec(executable="false"))


def test_sudo_wraps_command_line(sinks, settings, tmp_path: Path) -> None:
    fake_sudo = tmp_path / "sudo"
    fake_sudo.write_text('#!/bin/sh\nprintf "%s\\n" "$@"\n', encoding="utf-8")
    fake_sudo.chmod(0o755)

    runner = SystemCommand(
        settings=settings.model_copy(update={"sudo_binary": str(fake_sudo)}),
        stdout_sink=sinks[0],
        stderr_sink=sinks[1],
    )
    result = runner.run(CommandSpec(executable="/bin/echo", args=["hi"], env={"A": "1"}, sudo=True))
    lines = result.stdout_lines()
    assert lines[:2] == ["-E", "--"]
    assert lines[3:] == ["A=1", "/bin/echo", "hi"]
    assert lines[2].endswith("env")
