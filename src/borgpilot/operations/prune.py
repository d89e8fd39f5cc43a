"""borg prune followed by borg compact."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from borgpilot.messages import LogMessage, LogRecord
from borgpilot.models import KeepArchive, PruneArchive, PruneResult
from borgpilot.status import Status

from .context import BorgContext
from .repository import compact

__all__ = ["parse_keep_reason", "parse_prune_message", "parse_prune_name", "prune_archives"]

# borg --list pads the action column; the archive name always starts here
_NAME_COLUMN = 45
_PRUNE_PREFIXES = ("Would prune", "Pruning")
_KEEP_PREFIX = "Keeping"
_RULE_MARKER = "(rule: "


def parse_prune_name(message: str) -> str:
    """Archive name from a ``prune --list`` line, "" when the line is too short."""
    if len(message) < _NAME_COLUMN:
        return ""
    return message[_NAME_COLUMN:].split(" ")[0]


def parse_keep_reason(message: str) -> str:
    """Retention rule from a "Keeping archive (rule: daily #1): ..." line."""
    start = message.find(_RULE_MARKER)
    if start == -1:
        return ""
    start += len(_RULE_MARKER)
    end = message.find(")", start)
    if end == -1:
        return ""
    return message[start:end]


def parse_prune_message(message: str) -> PruneArchive | KeepArchive | None:
    if message.startswith(_PRUNE_PREFIXES):
        return PruneArchive(name=parse_prune_name(message))
    if message.startswith(_KEEP_PREFIX):
        return KeepArchive(name=parse_prune_name(message), reason=parse_keep_reason(message))
    return None


async def prune_archives(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
    prefix: str,
    prune_options: Sequence[str],
    *,
    dry_run: bool = False,
    cancel: asyncio.Event | None = None,
) -> tuple[PruneResult, Status]:
    """Apply retention rules to the archives starting with ``prefix``.

    A real (non dry-run) prune is always followed by ``compact``; borg does not
    free space for pruned archives before that. A failed compact is reported
    as the status of the whole operation.

    Args:
        ctx: Borg context
        repo_url: Repository location
        passphrase: Repository passphrase
        prefix: Only archives matching ``<prefix>*`` are considered
        prune_options: Keep rules, e.g. ``["--keep-daily", "7"]``
        dry_run: Only report what would be pruned
        cancel: Set to stop the prune

    Returns:
        Tuple of (PruneResult, status)

    Raises:
        ValueError: If ``prune_options`` is empty
    """
    if not prune_options:
        raise ValueError("prune options must not be empty")

    pruned: list[PruneArchive] = []
    kept: list[KeepArchive] = []

    def collect(record: LogRecord) -> None:
        if not isinstance(record, LogMessage):
            return
        match parse_prune_message(record.message):
            case PruneArchive() as archive:
                pruned.append(archive)
            case KeepArchive() as archive:
                kept.append(archive)

    args = ["prune", "--list", "--log-json", "--glob-archives", f"{prefix}*"]
    if dry_run:
        args.append("--dry-run")
    args.extend(prune_options)
    args.append(repo_url)

    status = await ctx.runner.stream(
        ctx.borg_path, args, ctx.env(passphrase).as_dict(), on_record=collect, cancel=cancel
    )
    result = PruneResult(is_dry_run=dry_run, pruned=tuple(pruned), kept=tuple(kept))
    if dry_run or not status.is_completed_with_success():
        return result, status
    compact_status = await compact(ctx, repo_url, passphrase, cancel=cancel)
    if not compact_status.is_completed_with_success():
        return result, compact_status
    return result, status
