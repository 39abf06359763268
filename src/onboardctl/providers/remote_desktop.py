"""Remote Desktop enablement through the registry and Windows Firewall."""
from __future__ import annotations

from dataclasses import dataclass

from ..runner import CommandError, CommandResult, CommandRunner

TERMINAL_SERVER_KEY = r"HKLM\SYSTEM\CurrentControlSet\Control\Terminal Server"


class RemoteDesktopError(CommandError):
    """Raised when Remote Desktop cannot be enabled."""


def _quote_ps(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass(slots=True)
class RemoteDesktopProvider:
    """Enable incoming Remote Desktop connections."""

    runner: CommandRunner
    firewall_match: str = "Remote Desktop"
    powershell_bin: str = "powershell"
    reg_bin: str = "reg"

    def enable_connections(self) -> CommandResult:
        """Clear ``fDenyTSConnections`` so the service accepts sessions."""
        result = self.runner.run(
            [
                self.reg_bin,
                "add",
                TERMINAL_SERVER_KEY,
                "/v",
                "fDenyTSConnections",
                "/t",
                "REG_DWORD",
                "/d",
                "0",
                "/f",
            ]
        )
        if not result.ok:
            raise RemoteDesktopError(
                f"Setting fDenyTSConnections failed (exit {result.returncode}): "
                f"{result.output()}",
                result=result,
            )
        return result

    def _rule_filter(self) -> str:
        pattern = _quote_ps(f"*{self.firewall_match}*")
        return f"Get-NetFirewallRule | Where-Object {{ $_.DisplayName -like {pattern} }}"

    def count_firewall_rules(self) -> int:
        """Return how many firewall rules match the configured display name."""
        script = f"@({self._rule_filter()}).Count"
        result = self._powershell(script)
        if not result.ok:
            raise RemoteDesktopError(
                f"Querying firewall rules failed (exit {result.returncode}): {result.output()}",
                result=result,
            )
        text = result.stdout.strip()
        try:
            return int(text.splitlines()[-1]) if text else 0
        except ValueError as exc:
            raise RemoteDesktopError(
                f"Unexpected firewall rule count output: {text!r}",
                result=result,
            ) from exc

    def enable_firewall_rules(self) -> int:
        """Enable matching firewall rules and return how many matched."""
        count = self.count_firewall_rules()
        if count == 0:
            return 0
        result = self._powershell(f"{self._rule_filter()} | Enable-NetFirewallRule")
        if not result.ok:
            raise RemoteDesktopError(
                f"Enabling firewall rules failed (exit {result.returncode}): {result.output()}",
                result=result,
            )
        return count

    def _powershell(self, script: str) -> CommandResult:
        return self.runner.run(
            [self.powershell_bin, "-NoProfile", "-NonInteractive", "-Command", script]
        )


__all__ = ["RemoteDesktopError", "RemoteDesktopProvider", "TERMINAL_SERVER_KEY"]
