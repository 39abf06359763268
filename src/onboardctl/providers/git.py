"""Git provider scoped to the onboarding repository."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..runner import CommandError, CommandResult, CommandRunner


class GitError(CommandError):
    """Raised when a git command fails."""


class GitPushError(GitError):
    """Raised when ``git push`` is rejected or cannot reach the remote."""


@dataclass(slots=True)
class GitProvider:
    """Run git commands against a single working tree."""

    runner: CommandRunner
    repo: Path
    git_bin: str = "git"
    remote: str = "origin"

    def get_config(self, key: str) -> str | None:
        """Return the effective value of *key* or ``None`` when unset."""
        result = self._git("config", "--get", key)
        if result.returncode == 1:
            return None
        self._check(result, f"git config --get {key}")
        value = result.stdout.strip()
        return value or None

    def set_config(self, key: str, value: str) -> None:
        """Set *key* in the repository-local configuration."""
        self._check(self._git("config", key, value), f"git config {key}")

    def current_branch(self) -> str:
        """Return the checked-out branch name."""
        result = self._check(
            self._git("rev-parse", "--abbrev-ref", "HEAD"),
            "git rev-parse --abbrev-ref HEAD",
        )
        return result.stdout.strip()

    def branch_exists(self, name: str) -> bool:
        """Return ``True`` when a local branch *name* exists."""
        return self._git("rev-parse", "--verify", "--quiet", f"refs/heads/{name}").ok

    def checkout(self, name: str, *, create: bool = False) -> None:
        """Switch to *name*, creating it from the current commit if asked."""
        args = ["checkout", "-b", name] if create else ["checkout", name]
        self._check(self._git(*args), f"git {' '.join(args)}")

    def fetch_branch(self, name: str) -> bool:
        """Fetch *name* from the remote; return ``False`` if it is unavailable."""
        return self._git("fetch", self.remote, name).ok

    def remote_branch_exists(self, name: str) -> bool:
        """Return ``True`` when the remote-tracking ref for *name* exists."""
        ref = f"refs/remotes/{self.remote}/{name}"
        return self._git("rev-parse", "--verify", "--quiet", ref).ok

    def commits_missing_locally(self, name: str) -> int:
        """Return how many remote commits on *name* are absent from ``HEAD``."""
        ref = f"refs/remotes/{self.remote}/{name}"
        result = self._check(
            self._git("rev-list", "--count", f"HEAD..{ref}"),
            f"git rev-list --count HEAD..{ref}",
        )
        return int(result.stdout.strip() or "0")

    def add(self, path: Path) -> None:
        """Stage *path*."""
        self._check(self._git("add", "--", str(path)), f"git add {path}")

    def has_staged_changes(self, path: Path) -> bool:
        """Return ``True`` when the index differs from ``HEAD`` for *path*."""
        result = self._git("diff", "--cached", "--quiet", "--", str(path))
        if result.returncode == 0:
            return False
        if result.returncode == 1:
            return True
        self._check(result, f"git diff --cached {path}")
        return False

    def commit(self, message: str, path: Path) -> None:
        """Commit *path* alone with *message*, leaving other staged changes alone."""
        self._check(self._git("commit", "-m", message, "--", str(path)), f"git commit {path}")

    def push_command(self, branch: str) -> str:
        """Return the command an operator can run to push *branch* by hand."""
        return f"git push -u {self.remote} {branch}"

    def push(self, branch: str) -> CommandResult:
        """Push *branch* and set upstream tracking."""
        result = self._git("push", "-u", self.remote, branch)
        if not result.ok:
            raise GitPushError(
                f"git push -u {self.remote} {branch} failed (exit {result.returncode}): "
                f"{result.output()}",
                result=result,
            )
        return result

    # ------------------------------------------------------------------
    def _git(self, *args: str) -> CommandResult:
        return self.runner.run([self.git_bin, "-C", str(self.repo), *args])

    def _check(self, result: CommandResult, error_prefix: str) -> CommandResult:
        if not result.ok:
            raise GitError(
                f"{error_prefix} failed (exit {result.returncode}): {result.output()}",
                result=result,
            )
        return result


__all__ = ["GitError", "GitProvider", "GitPushError"]
