"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import FakeRunner, ScriptedPrompter

from onboardctl.config import AppConfig, load_config

ConfigFactory = Callable[..., AppConfig]


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """Return a directory that looks like a git working tree."""
    root = tmp_path / "onboarding"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture
def make_config(tmp_path: Path, repo: Path) -> ConfigFactory:
    """Return a factory producing configs rooted in the temp directory."""

    def factory(**overrides: object) -> AppConfig:
        merged: dict[str, object] = {
            "logs_dir": str(tmp_path / "logs"),
            "repo_root": str(repo),
            "ssh": {"key_dir": str(tmp_path / "home" / ".ssh")},
        }
        merged.update(overrides)
        return load_config(
            config_file=tmp_path / "absent.yml",
            env={},
            overrides=merged,
        )

    return factory


@pytest.fixture
def runner() -> FakeRunner:
    """Return an empty fake command runner."""
    return FakeRunner()


@pytest.fixture
def prompter() -> ScriptedPrompter:
    """Return a prompter with no queued answers."""
    return ScriptedPrompter()
