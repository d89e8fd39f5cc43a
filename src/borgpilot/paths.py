"""Platform paths used by borg-pilot."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

__all__ = [
    "APP_DIR_NAME",
    "archive_mount_path",
    "default_log_dir",
    "ensure_mount_dir",
    "is_mounted",
    "mount_root",
    "repository_mount_path",
]

APP_DIR_NAME = "borg-pilot"


def mount_root(override: Path | None = None) -> Path:
    """Per-user runtime directory that holds FUSE mount points.

    ``/run/user/<uid>/borg-pilot`` on Linux, ``/private/tmp/<uid>/borg-pilot``
    on macOS, the temp directory elsewhere.
    """
    if override is not None:
        return override
    if sys.platform.startswith("linux"):
        base = Path("/run/user")
    elif sys.platform == "darwin":
        base = Path("/private/tmp")
    else:
        base = Path(tempfile.gettempdir())
    uid = str(os.getuid()) if hasattr(os, "getuid") else "0"
    return base / uid / APP_DIR_NAME


def repository_mount_path(repository_id: int, root: Path | None = None) -> Path:
    return mount_root(root) / f"repo-{repository_id}"


def archive_mount_path(archive_id: int, root: Path | None = None) -> Path:
    return mount_root(root) / f"archive-{archive_id}"


def ensure_mount_dir(path: Path) -> Path:
    """Create the mount point (and parents) if it does not exist yet."""
    path.mkdir(mode=0o755, parents=True, exist_ok=True)
    return path


def is_mounted(path: Path) -> bool:
    return path.is_dir() and os.path.ismount(path)


def default_log_dir() -> Path:
    """Directory for JSON log files (~/.local/share/borg-pilot/logs)."""
    return Path.home() / ".local" / "share" / APP_DIR_NAME / "logs"
