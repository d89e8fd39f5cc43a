"""FUSE mounting of repositories and archives (borg mount / borg umount)."""

from __future__ import annotations

from pathlib import Path

from borgpilot.paths import archive_mount_path, ensure_mount_dir, repository_mount_path
from borgpilot.status import Status

from .context import BorgContext, archive_path

__all__ = ["mount_archive", "mount_repository", "umount"]


async def _mount(ctx: BorgContext, repo_url: str, archive: str | None, passphrase: str, mount_path: Path) -> Status:
    # repository vs. single archive is decided by the path expression alone
    ensure_mount_dir(mount_path)
    _, status = await ctx.runner.run(
        ctx.mount_binary,
        ["mount", archive_path(repo_url, archive), str(mount_path)],
        ctx.env(passphrase).as_dict(),
    )
    return status


async def mount_repository(
    ctx: BorgContext,
    repository_id: int,
    repo_url: str,
    passphrase: str,
) -> tuple[Path, Status]:
    """Mount all archives of a repository under its per-repository mount directory."""
    mount_path = repository_mount_path(repository_id, ctx.mount_root)
    return mount_path, await _mount(ctx, repo_url, None, passphrase, mount_path)


async def mount_archive(
    ctx: BorgContext,
    archive_id: int,
    repo_url: str,
    archive: str,
    passphrase: str,
) -> tuple[Path, Status]:
    """Mount a single archive under its per-archive mount directory."""
    mount_path = archive_mount_path(archive_id, ctx.mount_root)
    return mount_path, await _mount(ctx, repo_url, archive, passphrase, mount_path)


async def umount(ctx: BorgContext, mount_path: Path) -> Status:
    _, status = await ctx.runner.run(ctx.mount_binary, ["umount", str(mount_path)], ctx.env().as_dict())
    return status
