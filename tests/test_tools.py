"""Tests for tool presence probes."""
from __future__ import annotations

from collections.abc import Callable

from fakes import FakeRunner

from onboardctl.config import AppConfig
from onboardctl.tools import Tool, probe_tool, probe_tools


def test_probe_tools_reports_every_tool(
    runner: FakeRunner,
    make_config: Callable[..., AppConfig],
) -> None:
    """Host tools are resolved on PATH; absent ones are reported missing."""
    runner.install("pwsh", "git")

    presence = {entry.tool: entry for entry in probe_tools(runner, make_config())}

    assert list(presence) == list(Tool)
    assert presence[Tool.PWSH].present is True
    assert presence[Tool.PWSH].detail == "C:/Tools/pwsh.exe"
    assert presence[Tool.GIT].present is True
    assert presence[Tool.DOCKER].present is False
    assert presence[Tool.WSL].present is False
    assert presence[Tool.ANSIBLE].to_dict() == {
        "tool": "ansible",
        "present": False,
        "detail": "wsl is not installed",
    }


def test_probe_ansible_inside_distro(
    runner: FakeRunner,
    make_config: Callable[..., AppConfig],
) -> None:
    """Ansible is looked up inside the configured distro."""
    runner.install("wsl")
    runner.on("wsl", "--list", "--quiet", stdout="Ubuntu\n")
    runner.on("wsl", "-d", "Ubuntu", "--", "ansible", returncode=127)
    config = make_config()

    missing = probe_tool(Tool.ANSIBLE, runner, config)
    runner.on("wsl", "-d", "Ubuntu", "--", "ansible", stdout="ansible [core 2.16.3]\n")
    present = probe_tool(Tool.ANSIBLE, runner, config)

    assert missing.present is False
    assert missing.detail == "not found inside Ubuntu"
    assert present.present is True


def test_probe_ansible_without_distro(
    runner: FakeRunner,
    make_config: Callable[..., AppConfig],
) -> None:
    """A missing distro is reported before ansible is queried."""
    runner.install("wsl")
    runner.on("wsl", "--list", "--quiet", stdout="docker-desktop\n")

    result = probe_tool(Tool.ANSIBLE, runner, make_config(wsl={"distro": "Ubuntu-24.04"}))

    assert result.present is False
    assert result.detail == "Ubuntu-24.04 is not installed"
