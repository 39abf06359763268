"""Command execution capability shared by every provider.

Providers never call :mod:`subprocess` directly; they receive a
:class:`CommandRunner` so tests can substitute scripted responses for
``winget``, ``wsl``, ``git`` and friends.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

LOGGER = logging.getLogger(__name__)

# Return code reported when the executable itself cannot be found.
COMMAND_NOT_FOUND = 127


class CommandError(RuntimeError):
    """Raised when a required external command fails."""

    def __init__(self, message: str, *, result: CommandResult | None = None) -> None:
        """Store the failing *result* alongside the message."""
        super().__init__(message)
        self.result = result


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a single external command."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` when the command exited with status zero."""
        return self.returncode == 0

    def output(self) -> str:
        """Return the most useful diagnostic text for the command."""
        return self.stderr.strip() or self.stdout.strip() or "no output"


class CommandRunner(Protocol):
    """Capability interface for running external commands."""

    def run(self, argv: Sequence[str], *, input: str | None = None) -> CommandResult:
        """Run *argv* to completion and return its result."""
        ...

    def which(self, name: str) -> str | None:
        """Return the resolved path of executable *name* or ``None``."""
        ...


class SubprocessRunner:
    """Run commands on the local machine via :func:`subprocess.run`."""

    def run(self, argv: Sequence[str], *, input: str | None = None) -> CommandResult:
        """Run *argv* and capture its output without raising on failure."""
        args = [str(part) for part in argv]
        LOGGER.debug("exec: %s", " ".join(args))
        try:
            completed = subprocess.run(  # noqa: S603
                args,
                input=input,
                capture_output=True,
                text=True,
                errors="replace",
                check=False,
            )
        except FileNotFoundError as exc:
            return CommandResult(
                argv=tuple(args),
                returncode=COMMAND_NOT_FOUND,
                stderr=f"{args[0]} not found: {exc}",
            )
        LOGGER.debug("exit %s: %s", completed.returncode, args[0])
        return CommandResult(
            argv=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def which(self, name: str) -> str | None:
        """Resolve *name* on ``PATH``."""
        return shutil.which(name)


def check_result(result: CommandResult, error_prefix: str) -> CommandResult:
    """Return *result* or raise :class:`CommandError` when it failed."""
    if not result.ok:
        raise CommandError(
            f"{error_prefix} failed (exit {result.returncode}): {result.output()}",
            result=result,
        )
    return result


__all__ = [
    "COMMAND_NOT_FOUND",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
    "check_result",
]
