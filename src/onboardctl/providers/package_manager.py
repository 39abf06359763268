"""winget provider for installing host packages."""
from __future__ import annotations

from dataclasses import dataclass

from ..runner import CommandError, CommandResult, CommandRunner

# winget exit codes meaning "nothing to do"; Windows reports them unsigned.
_ALREADY_SATISFIED_CODES = {
    0x8A15002B,  # APPINSTALLER_CLI_ERROR_UPDATE_NOT_APPLICABLE
    0x8A150061,  # APPINSTALLER_CLI_ERROR_PACKAGE_ALREADY_INSTALLED
}


class PackageManagerError(CommandError):
    """Raised when winget is unavailable or an install fails."""


def _is_already_satisfied(returncode: int) -> bool:
    return (returncode & 0xFFFFFFFF) in _ALREADY_SATISFIED_CODES


@dataclass(slots=True)
class PackageManagerProvider:
    """Thin wrapper around the ``winget`` command line."""

    runner: CommandRunner
    winget_bin: str = "winget"

    def is_available(self) -> bool:
        """Return ``True`` when winget resolves and answers ``--version``."""
        if self.runner.which(self.winget_bin) is None:
            return False
        return self.runner.run([self.winget_bin, "--version"]).ok

    def install(self, package_id: str) -> CommandResult:
        """Install *package_id* non-interactively.

        winget is idempotent here: an already-installed package is reported
        through a dedicated exit code which counts as success.
        """
        result = self.runner.run(
            [
                self.winget_bin,
                "install",
                "--id",
                package_id,
                "--exact",
                "--silent",
                "--accept-source-agreements",
                "--accept-package-agreements",
            ]
        )
        if result.ok or _is_already_satisfied(result.returncode):
            return result
        raise PackageManagerError(
            f"winget install {package_id} failed (exit {result.returncode}): {result.output()}",
            result=result,
        )


__all__ = ["PackageManagerError", "PackageManagerProvider"]
