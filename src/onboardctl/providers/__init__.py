"""Provider interfaces for onboardctl."""
from __future__ import annotations

from .git import GitError, GitProvider, GitPushError
from .package_manager import PackageManagerError, PackageManagerProvider
from .remote_desktop import RemoteDesktopError, RemoteDesktopProvider
from .wsl import WslError, WslProvider

__all__ = [
    "GitError",
    "GitProvider",
    "GitPushError",
    "PackageManagerError",
    "PackageManagerProvider",
    "RemoteDesktopError",
    "RemoteDesktopProvider",
    "WslError",
    "WslProvider",
]
