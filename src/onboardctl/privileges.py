"""Elevation detection for the current process."""
from __future__ import annotations

import ctypes
import os
import sys


def is_elevated() -> bool:
    """Return ``True`` when the process runs with administrator rights.

    On Windows this asks the shell whether the token is a member of the
    Administrators group. Elsewhere an effective UID of zero counts as elevated.
    """
    if sys.platform == "win32":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except (AttributeError, OSError):
            return False
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return False
    return geteuid() == 0


__all__ = ["is_elevated"]
