"""Archive-level borg verbs: rename and comment edit."""

from __future__ import annotations

from borgpilot.status import Status

from .context import BorgContext, archive_path

__all__ = ["rename_archive", "set_archive_comment"]


async def rename_archive(ctx: BorgContext, repo_url: str, archive: str, passphrase: str, new_name: str) -> Status:
    _, status = await ctx.runner.run(
        ctx.borg_path,
        ["rename", archive_path(repo_url, archive), new_name],
        ctx.env(passphrase).as_dict(),
    )
    return status


async def set_archive_comment(ctx: BorgContext, repo_url: str, archive: str, passphrase: str, comment: str) -> Status:
    """Replace the comment of an archive (``borg recreate --comment``)."""
    _, status = await ctx.runner.run(
        ctx.borg_path,
        ["recreate", "--comment", comment, archive_path(repo_url, archive)],
        ctx.env(passphrase).as_dict(),
    )
    return status
