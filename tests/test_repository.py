"""Tests for repository root discovery."""
from __future__ import annotations

from pathlib import Path

import pytest

from onboardctl.repository import (
    RepositoryNotFoundError,
    candidate_roots,
    find_repository_root,
)


def test_candidate_order_and_deduplication(tmp_path: Path) -> None:
    """Script directory, its parent and the cwd are searched once each."""
    script_dir = tmp_path / "repo" / "scripts"
    script_dir.mkdir(parents=True)

    candidates = candidate_roots(script_dir, tmp_path / "repo")

    assert candidates == [script_dir.resolve(), (tmp_path / "repo").resolve()]


def test_script_directory_wins(tmp_path: Path) -> None:
    """A repository at the script location is preferred over the cwd."""
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    other = tmp_path / "other"
    (other / ".git").mkdir(parents=True)

    assert find_repository_root(repo, other) == repo.resolve()


def test_parent_of_script_directory(tmp_path: Path) -> None:
    """A script kept in a subdirectory finds the repository above it."""
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    (repo / "scripts").mkdir()

    assert find_repository_root(repo / "scripts", tmp_path) == repo.resolve()


def test_working_directory_fallback(tmp_path: Path) -> None:
    """The cwd is used when the script lives outside any repository."""
    install = tmp_path / "tools" / "bin"
    install.mkdir(parents=True)
    repo = tmp_path / "checkout"
    repo.mkdir()
    # Worktrees and submodules use a .git file.
    (repo / ".git").write_text("gitdir: elsewhere\n", encoding="utf-8")

    assert find_repository_root(install, repo) == repo.resolve()


def test_not_found_lists_candidates(tmp_path: Path) -> None:
    """The error names every directory that was searched."""
    script_dir = tmp_path / "a" / "b"
    script_dir.mkdir(parents=True)

    with pytest.raises(RepositoryNotFoundError) as excinfo:
        find_repository_root(script_dir, tmp_path)

    assert excinfo.value.candidates == [
        script_dir.resolve(),
        (tmp_path / "a").resolve(),
        tmp_path.resolve(),
    ]
    assert "No git repository found" in str(excinfo.value)


def test_explicit_root_must_be_repository(tmp_path: Path) -> None:
    """An explicit root is used as-is and never falls back."""
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)

    assert find_repository_root(tmp_path, tmp_path, explicit=repo) == repo.resolve()
    with pytest.raises(RepositoryNotFoundError):
        find_repository_root(repo, repo, explicit=tmp_path / "missing")
