"""Builds the exact argument vector passed to process creation.

No shell is ever involved: every argument stays a discrete argv entry, so an
executable path containing spaces is invoked as-is. Environment variables are
made visible to the child by prefixing the command with ``env NAME=value ...``,
and privilege escalation wraps the result in ``sudo -E --``.
"""

from __future__ import annotations

import os
import re
import shlex
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from syscmd.core.config import RunnerSettings

_ENV_NAME_RE = re.compile(r"\A[A-Za-z_][A-Za-z0-9_]*\Z")


class ArgumentError(ValueError):
    """Raised when a command cannot be constructed. No process is spawned."""


@dataclass(frozen=True)
class CommandSpec:
    """What to run and how.

    Attributes:
        executable: Name looked up on the search path, or a path (used verbatim).
        args: Arguments, passed as discrete argv entries.
        env: Variables for the child. ``None`` values force the variable unset.
        sudo: Run through ``sudo -E --``.
        must_succeed: Raise ``CommandError`` instead of returning a failed result.
        print_stdout: Echo standard output live.
        print_stderr: Echo standard error live.
        verbose: Print the (redacted) command line before running it.
        debug: Same display as ``verbose``.
        secrets: Strings masked on every human-facing surface.
        cwd: Working directory of the child.
        input: Text written to the child's standard input.
    """

    executable: str | os.PathLike[str]
    args: Sequence[object] = ()
    env: Mapping[str, object | None] = field(default_factory=dict)
    sudo: bool = False
    must_succeed: bool = False
    print_stdout: bool = False
    print_stderr: bool = True
    verbose: bool = False
    debug: bool = False
    secrets: Sequence[str] = ()
    cwd: str | os.PathLike[str] | None = None
    input: str | Sequence[str] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(_to_str(arg) for arg in self.args))
        object.__setattr__(self, "env", dict(self.env))
        if isinstance(self.secrets, str):
            object.__setattr__(self, "secrets", (self.secrets,))
        else:
            object.__setattr__(self, "secrets", tuple(self.secrets))


@dataclass(frozen=True)
class SpawnSpec:
    """Resolved, immutable spawn parameters.

    Attributes:
        argv: Exactly what is handed to process creation.
        unset_env: Variable names removed from the child's inherited environment.
        cwd: Working directory, or None to inherit.
    """

    argv: tuple[str, ...]
    unset_env: frozenset[str] = frozenset()
    cwd: str | None = None

    @property
    def command_line(self) -> str:
        """Shell-quoted rendering of ``argv``, for display only."""

        return shlex.join(self.argv)


class ArgvBuilder:
    """Resolves executables and assembles the final argv."""

    def __init__(
        self,
        *,
        settings: RunnerSettings | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or RunnerSettings()
        self._environ = os.environ if environ is None else environ

    def build(self, spec: CommandSpec) -> SpawnSpec:
        """Builds the spawn parameters for ``spec``.

        Raises:
            ArgumentError: If the executable is empty or a variable name is invalid.
        """

        executable = _to_str(spec.executable)
        if not executable:
            raise ArgumentError("executable must not be empty.")

        assignments: list[str] = []
        unset: set[str] = set()
        custom_path: str | None = None
        for name, value in spec.env.items():
            if not isinstance(name, str) or not _ENV_NAME_RE.match(name):
                raise ArgumentError(f"Invalid variable name: {name!r}")
            if value is None:
                unset.add(name)
                continue
            text = _to_str(value)
            assignments.append(f"{name}={text}")
            if name == "PATH":
                custom_path = text

        search_path = custom_path if custom_path is not None else self.inherited_path()
        argv = [self.which(executable, search_path), *spec.args]

        if assignments:
            env_binary = self._which_wrapper(self._settings.env_binary, search_path)
            argv = [env_binary, *assignments, *argv]

        if spec.sudo:
            sudo_binary = self._which_wrapper(self._settings.sudo_binary, search_path)
            argv = [sudo_binary, "-E", "--", *argv]

        return SpawnSpec(
            argv=tuple(argv),
            unset_env=frozenset(unset),
            cwd=_to_str(spec.cwd) if spec.cwd is not None else None,
        )

    def inherited_path(self) -> str:
        """Returns the search path of the invoking process."""

        return self._environ.get("PATH") or os.defpath

    @staticmethod
    def which(name: str, search_path: str) -> str:
        """Resolves ``name`` on ``search_path``.

        Names containing a path separator are returned verbatim. Names that
        cannot be found are returned unchanged and fail later at spawn time.
        """

        if os.sep in name or (os.altsep is not None and os.altsep in name):
            return name
        return shutil.which(name, path=search_path) or name

    def _which_wrapper(self, name: str, search_path: str) -> str:
        # A custom PATH rarely carries env/sudo; fall back to the inherited one.
        resolved = self.which(name, search_path)
        if resolved == name and search_path != self.inherited_path():
            resolved = self.which(name, self.inherited_path())
        return resolved


def _to_str(value: object) -> str:
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    return str(value)
