"""borg delete: single archives, archives by prefix, whole repositories."""

from __future__ import annotations

import asyncio

from borgpilot.logger import get_logger
from borgpilot.status import Status

from .context import BorgContext, archive_path
from .repository import compact

__all__ = ["delete_archive", "delete_archives", "delete_repository"]


async def delete_archive(ctx: BorgContext, repo_url: str, archive: str, passphrase: str) -> Status:
    _, status = await ctx.runner.run(
        ctx.borg_path, ["delete", archive_path(repo_url, archive)], ctx.env(passphrase).as_dict()
    )
    return status


async def delete_archives(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
    prefix: str,
    *,
    cancel: asyncio.Event | None = None,
) -> Status:
    """Delete every archive whose name starts with ``prefix``, then compact.

    The status of the delete is returned unless the follow-up compact failed.
    """
    _, status = await ctx.runner.run(
        ctx.borg_path,
        ["delete", "--glob-archives", f"{prefix}*", repo_url],
        ctx.env(passphrase).as_dict(),
        cancel=cancel,
    )
    if not status.is_completed_with_success():
        return status

    compact_status = await compact(ctx, repo_url, passphrase, cancel=cancel)
    if not compact_status.is_completed_with_success():
        get_logger("borgpilot.operations.delete", repository=repo_url).error(
            "Failed to compact after delete", error=compact_status.error_message
        )
        return compact_status
    return status


async def delete_repository(ctx: BorgContext, repo_url: str, passphrase: str) -> Status:
    """Delete the repository itself. borg's interactive confirmation is answered via the environment."""
    env = ctx.env(passphrase).with_delete_confirmation()
    _, status = await ctx.runner.run(ctx.borg_path, ["delete", repo_url], env.as_dict())
    return status
