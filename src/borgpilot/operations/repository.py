"""Repository-level borg verbs: init, info, list, compact, break-lock, key change."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog

from borgpilot.logger import get_logger
from borgpilot.messages import parse_borg_time, sanitize_output
from borgpilot.models import (
    ArchiveInfo,
    ArchiveListEntry,
    ArchiveStats,
    Cache,
    InfoResponse,
    ListResponse,
    RepositoryInfo,
)
from borgpilot.status import ERROR_INVALID_OUTPUT, Status

from .context import BorgContext, archive_path

__all__ = [
    "break_lock",
    "change_passphrase",
    "compact",
    "info",
    "init_repository",
    "list_archives",
    "parse_info",
    "parse_list",
]

ENCRYPTION_NONE = "none"
ENCRYPTION_REPOKEY = "repokey-blake2"


def _archive_info(data: dict[str, Any]) -> ArchiveInfo:
    return ArchiveInfo(
        name=data["name"],
        id=data.get("id", ""),
        hostname=data.get("hostname", ""),
        username=data.get("username", ""),
        comment=data.get("comment", ""),
        start=parse_borg_time(data.get("start")),
        end=parse_borg_time(data.get("end")),
        duration=float(data.get("duration") or 0.0),
        command_line=tuple(data.get("command_line") or ()),
        stats=ArchiveStats.from_dict(data.get("stats") or {}),
    )


def _list_entry(data: dict[str, Any]) -> ArchiveListEntry:
    return ArchiveListEntry(
        name=data["name"],
        id=data.get("id", ""),
        archive=data.get("archive", ""),
        barchive=data.get("barchive", ""),
        start=parse_borg_time(data.get("start")),
        end=parse_borg_time(data.get("end")),
    )


def _load(output: str, logger: structlog.stdlib.BoundLogger | None) -> dict[str, Any]:
    data = json.loads(sanitize_output(output, logger))
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def parse_info(output: str, logger: structlog.stdlib.BoundLogger | None = None) -> InfoResponse:
    """Decode ``borg info --json`` output, ignoring banner lines before the JSON.

    Raises:
        ValueError: If the output is not the expected JSON document
    """
    data = _load(output, logger)
    try:
        return InfoResponse(
            repository=RepositoryInfo.from_dict(data["repository"]),
            encryption_mode=(data.get("encryption") or {}).get("mode", ""),
            cache=Cache.from_dict(data.get("cache") or {}),
            security_dir=data.get("security_dir", ""),
            archives=tuple(_archive_info(a) for a in data.get("archives") or ()),
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"malformed info output: {e}") from e


def parse_list(output: str, logger: structlog.stdlib.BoundLogger | None = None) -> ListResponse:
    """Decode ``borg list --json`` output, ignoring banner lines before the JSON.

    Raises:
        ValueError: If the output is not the expected JSON document
    """
    data = _load(output, logger)
    try:
        return ListResponse(
            repository=RepositoryInfo.from_dict(data["repository"]),
            encryption_mode=(data.get("encryption") or {}).get("mode", ""),
            archives=tuple(_list_entry(a) for a in data.get("archives") or ()),
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"malformed list output: {e}") from e


async def init_repository(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
    *,
    no_passphrase: bool = False,
) -> Status:
    """Create a new repository (``repokey-blake2``, or unencrypted with ``no_passphrase``).

    An existing repository is reported as ``ERROR_REPOSITORY_ALREADY_EXISTS``.
    """
    encryption = ENCRYPTION_NONE if no_passphrase else ENCRYPTION_REPOKEY
    _, status = await ctx.runner.run(
        ctx.borg_path,
        ["init", f"--encryption={encryption}", repo_url],
        ctx.env("" if no_passphrase else passphrase).as_dict(),
    )
    return status


async def info(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
    archive: str | None = None,
) -> tuple[InfoResponse | None, Status]:
    """Repository (or single archive) information via ``borg info --json``."""
    logger = get_logger("borgpilot.operations.info", repository=repo_url)
    result, status = await ctx.runner.run(
        ctx.borg_path,
        ["info", "--json", archive_path(repo_url, archive)],
        ctx.env(passphrase).as_dict(),
    )
    if not status.is_completed_with_success():
        return None, status
    try:
        return parse_info(result.output, logger), status
    except ValueError as e:
        logger.error("Failed to parse borg info output", error=str(e))
        return None, Status.from_exception(e, ERROR_INVALID_OUTPUT)


async def list_archives(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
) -> tuple[ListResponse | None, Status]:
    """Archives of a repository via ``borg list --json``."""
    logger = get_logger("borgpilot.operations.list", repository=repo_url)
    result, status = await ctx.runner.run(
        ctx.borg_path,
        ["list", "--json", "--format", "{end}", repo_url],
        ctx.env(passphrase).as_dict(),
    )
    if not status.is_completed_with_success():
        return None, status
    try:
        return parse_list(result.output, logger), status
    except ValueError as e:
        logger.error("Failed to parse borg list output", error=str(e))
        return None, Status.from_exception(e, ERROR_INVALID_OUTPUT)


async def compact(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
    *,
    cancel: asyncio.Event | None = None,
) -> Status:
    _, status = await ctx.runner.run(
        ctx.borg_path, ["compact", repo_url], ctx.env(passphrase).as_dict(), cancel=cancel
    )
    return status


async def break_lock(ctx: BorgContext, repo_url: str, passphrase: str) -> Status:
    """Remove a stale repository lock left behind by a killed borg process."""
    _, status = await ctx.runner.run(ctx.borg_path, ["break-lock", repo_url], ctx.env(passphrase).as_dict())
    return status


async def change_passphrase(
    ctx: BorgContext,
    repo_url: str,
    current_passphrase: str,
    new_passphrase: str,
) -> Status:
    env = ctx.env(current_passphrase).with_new_passphrase(new_passphrase)
    _, status = await ctx.runner.run(ctx.borg_path, ["key", "change-passphrase", repo_url], env.as_dict())
    return status
