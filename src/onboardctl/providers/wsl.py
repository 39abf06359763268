"""WSL provider for the Linux distribution that hosts Ansible."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..runner import CommandError, CommandResult, CommandRunner, check_result

ANSIBLE_INSTALL_SCRIPT = (
    "apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y ansible"
)


class WslError(CommandError):
    """Raised when a WSL operation fails."""


def parse_distro_list(output: str) -> list[str]:
    """Return distro names from ``wsl --list --quiet`` output.

    ``wsl.exe`` writes UTF-16 which arrives with interleaved NUL characters
    when decoded as the console code page; those are stripped here.
    """
    cleaned = output.replace("\x00", "").replace("\ufeff", "")
    return [line.strip() for line in cleaned.splitlines() if line.strip()]


@dataclass(slots=True)
class WslProvider:
    """Query, install and run commands inside a WSL distribution."""

    runner: CommandRunner
    distro: str = "Ubuntu"
    wsl_bin: str = "wsl"

    def is_available(self) -> bool:
        """Return ``True`` when ``wsl`` resolves on PATH."""
        return self.runner.which(self.wsl_bin) is not None

    def installed_distros(self) -> list[str]:
        """Return the names of installed distributions."""
        result = self.runner.run([self.wsl_bin, "--list", "--quiet"])
        if not result.ok:
            # wsl exits non-zero when no distribution is installed yet.
            return []
        return parse_distro_list(result.stdout)

    def is_installed(self) -> bool:
        """Return ``True`` when the configured distro is listed."""
        wanted = self.distro.lower()
        return any(name.lower() == wanted for name in self.installed_distros())

    def install(self) -> CommandResult:
        """Trigger installation of the configured distro."""
        result = self.runner.run([self.wsl_bin, "--install", "-d", self.distro, "--no-launch"])
        try:
            return check_result(result, f"wsl --install -d {self.distro}")
        except CommandError as exc:
            raise WslError(str(exc), result=result) from exc

    def is_initialized(self) -> bool:
        """Return ``True`` once the distro has completed its first-run setup."""
        result = self.run(["echo", "ready"])
        return result.ok and "ready" in result.stdout

    def run(
        self,
        command: Sequence[str],
        *,
        user: str | None = None,
        input: str | None = None,
    ) -> CommandResult:
        """Run *command* inside the distro and return its result."""
        argv = [self.wsl_bin, "-d", self.distro]
        if user is not None:
            argv.extend(["-u", user])
        argv.append("--")
        argv.extend(command)
        return self.runner.run(argv, input=input)

    def shell(self, script: str, *, user: str | None = None) -> CommandResult:
        """Run *script* through ``sh -c`` inside the distro."""
        return self.run(["sh", "-c", script], user=user)

    def has_ansible(self) -> bool:
        """Return ``True`` when ``ansible --version`` succeeds inside the distro."""
        return self.run(["ansible", "--version"]).ok

    def install_ansible(self) -> CommandResult:
        """Install Ansible with apt as root inside the distro."""
        result = self.shell(ANSIBLE_INSTALL_SCRIPT, user="root")
        if not result.ok:
            raise WslError(
                f"Installing ansible in {self.distro} failed (exit {result.returncode}): "
                f"{result.output()}",
                result=result,
            )
        return result

    def home_dir(self) -> str:
        """Return ``$HOME`` of the default distro user."""
        result = self.shell('printf %s "$HOME"')
        if not result.ok or not result.stdout.strip():
            raise WslError(
                f"Could not determine the home directory inside {self.distro}: {result.output()}",
                result=result,
            )
        return result.stdout.strip()


__all__ = ["ANSIBLE_INSTALL_SCRIPT", "WslError", "WslProvider", "parse_distro_list"]
