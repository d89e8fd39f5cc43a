"""Shared context for borg operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from borgpilot.env import Env

if TYPE_CHECKING:
    from borgpilot.runner import CommandRunner


def archive_path(repo_url: str, archive: str | None = None) -> str:
    """Path expression borg uses for a repository or one of its archives."""
    if archive is None:
        return repo_url
    return f"{repo_url}::{archive}"


@dataclass(frozen=True)
class BorgContext:
    """Binaries, credentials and runner every operation needs."""

    runner: CommandRunner
    borg_path: str = "borg"
    borg_mount_path: str = ""  # FUSE-capable build; falls back to borg_path
    ssh_private_keys: tuple[str, ...] = field(default_factory=tuple)
    mount_root: Path | None = None  # overrides the platform runtime directory

    @property
    def mount_binary(self) -> str:
        return self.borg_mount_path or self.borg_path

    def env(self, passphrase: str = "") -> Env:
        return Env(ssh_private_keys=self.ssh_private_keys).with_passphrase(passphrase)
