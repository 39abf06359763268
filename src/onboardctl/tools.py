"""Presence probes for the tools an onboarded machine needs."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .config import AppConfig
from .providers.wsl import WslProvider
from .runner import CommandRunner


class Tool(str, Enum):
    """Tools whose presence the onboarding run cares about."""

    PWSH = "pwsh"
    WSL = "wsl"
    ANSIBLE = "ansible"
    DOCKER = "docker"
    GIT = "git"


@dataclass(frozen=True, slots=True)
class ToolPresence:
    """Result of probing a single tool; never cached between runs."""

    tool: Tool
    present: bool
    detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"tool": self.tool.value, "present": self.present, "detail": self.detail}


def probe_tool(tool: Tool, runner: CommandRunner, config: AppConfig) -> ToolPresence:
    """Probe *tool* on the host (or inside the distro for Ansible)."""
    if tool is Tool.ANSIBLE:
        wsl = WslProvider(runner=runner, distro=config.wsl.distro, wsl_bin=config.wsl.bin)
        if not wsl.is_available():
            return ToolPresence(tool, False, "wsl is not installed")
        if not wsl.is_installed():
            return ToolPresence(tool, False, f"{config.wsl.distro} is not installed")
        if wsl.has_ansible():
            return ToolPresence(tool, True, f"inside {config.wsl.distro}")
        return ToolPresence(tool, False, f"not found inside {config.wsl.distro}")

    binaries = {
        Tool.PWSH: "pwsh",
        Tool.WSL: config.wsl.bin,
        Tool.DOCKER: "docker",
        Tool.GIT: config.git_bin,
    }
    resolved = runner.which(binaries[tool])
    return ToolPresence(tool, resolved is not None, resolved)


def probe_tools(runner: CommandRunner, config: AppConfig) -> list[ToolPresence]:
    """Probe every :class:`Tool` in declaration order."""
    return [probe_tool(tool, runner, config) for tool in Tool]


__all__ = ["Tool", "ToolPresence", "probe_tool", "probe_tools"]
