"""Unit tests for platform paths."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from borgpilot.paths import (
    archive_mount_path,
    default_log_dir,
    ensure_mount_dir,
    is_mounted,
    mount_root,
    repository_mount_path,
)


class TestMountRoot:
    def test_override(self, tmp_path: Path) -> None:
        assert mount_root(tmp_path) == tmp_path

    def test_linux_runtime_dir(self) -> None:
        with (
            patch("borgpilot.paths.sys.platform", "linux"),
            patch("borgpilot.paths.os.getuid", return_value=1000, create=True),
        ):
            assert mount_root() == Path("/run/user/1000/borg-pilot")

    def test_macos(self) -> None:
        with (
            patch("borgpilot.paths.sys.platform", "darwin"),
            patch("borgpilot.paths.os.getuid", return_value=501, create=True),
        ):
            assert mount_root() == Path("/private/tmp/501/borg-pilot")


class TestMountPaths:
    def test_per_repository_and_archive(self, tmp_path: Path) -> None:
        assert repository_mount_path(3, tmp_path) == tmp_path / "repo-3"
        assert archive_mount_path(11, tmp_path) == tmp_path / "archive-11"

    def test_ensure_mount_dir_is_idempotent(self, tmp_path: Path) -> None:
        path = tmp_path / "a" / "b"
        assert ensure_mount_dir(path) == path
        ensure_mount_dir(path)
        assert path.is_dir()

    def test_plain_directory_is_not_mounted(self, tmp_path: Path) -> None:
        assert not is_mounted(tmp_path)
        assert not is_mounted(tmp_path / "missing")


def test_default_log_dir() -> None:
    assert default_log_dir() == Path.home() / ".local" / "share" / "borg-pilot" / "logs"
