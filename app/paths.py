"""
app/paths.py -- Path resolution for frozen and development modes.

Uses platformdirs for the per-user data directory that holds the offline
store and the bearer token.  ``AUTHORIO_DATA_DIR`` overrides it (see
app/config.py).
"""

from __future__ import annotations

import os
import sys

from platformdirs import user_data_dir

_APP_NAME = "Authorio"
_APP_AUTHOR = "Authorio"


def is_frozen() -> bool:
    """Return True if running from a PyInstaller bundle."""
    return getattr(sys, "frozen", False) and hasattr(sys, "_MEIPASS")


def get_project_root() -> str:
    """Return the repository root (or the bundle dir when frozen)."""
    if is_frozen():
        return sys._MEIPASS  # type: ignore[attr-defined]
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory, creating it."""
    path = user_data_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path
