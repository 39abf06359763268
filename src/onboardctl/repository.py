"""Repository root discovery."""
from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

REPOSITORY_MARKER = ".git"


class RepositoryNotFoundError(RuntimeError):
    """Raised when no candidate directory contains a repository marker."""

    def __init__(self, candidates: Iterable[Path]) -> None:
        """Remember which directories were searched."""
        self.candidates = list(candidates)
        searched = ", ".join(str(path) for path in self.candidates)
        super().__init__(f"No git repository found (searched: {searched}).")


def candidate_roots(script_dir: Path, cwd: Path) -> list[Path]:
    """Return the search order for the repository root.

    The directory holding the script comes first, then its parent, then the
    current working directory. Duplicates are dropped while keeping order.
    """
    ordered: list[Path] = []
    for candidate in (script_dir, script_dir.parent, cwd):
        resolved = candidate.resolve()
        if resolved not in ordered:
            ordered.append(resolved)
    return ordered


def is_repository(path: Path) -> bool:
    """Return ``True`` if *path* carries a ``.git`` directory or file."""
    return (path / REPOSITORY_MARKER).exists()


def find_repository_root(
    script_dir: Path,
    cwd: Path,
    *,
    explicit: Path | None = None,
) -> Path:
    """Locate the repository the onboarding run should publish into."""
    if explicit is not None:
        resolved = explicit.expanduser().resolve()
        if is_repository(resolved):
            return resolved
        raise RepositoryNotFoundError([resolved])

    candidates = candidate_roots(script_dir, cwd)
    for candidate in candidates:
        if is_repository(candidate):
            return candidate
    raise RepositoryNotFoundError(candidates)


__all__ = [
    "REPOSITORY_MARKER",
    "RepositoryNotFoundError",
    "candidate_roots",
    "find_repository_root",
    "is_repository",
]
