"""borg create with a progress feed based on a dry-run file count."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from borgpilot.messages import ArchiveProgress, FileStatus, LogRecord, decode_line
from borgpilot.models import BackupProgress
from borgpilot.status import Status

from .context import BorgContext, archive_path

__all__ = ["archive_name", "count_backup_files", "create_archive", "progress_for"]

ARCHIVE_TIME_FORMAT = "%Y-%m-%d-%H-%M-%S"


def archive_name(prefix: str, now: datetime | None = None) -> str:
    """Archive name for a new backup: prefix followed by the local time."""
    return f"{prefix}{(now or datetime.now()).strftime(ARCHIVE_TIME_FORMAT)}"


def count_backup_files(lines: Iterable[str]) -> int:
    """Count the regular files a ``create --dry-run --list --log-json`` run listed.

    Directories and paths that no longer exist are not counted.
    """
    total = 0
    for line in lines:
        record = decode_line(line)
        if not isinstance(record, FileStatus):
            continue
        path = Path(record.path)
        if path.exists() and not path.is_dir():
            total += 1
    return total


def progress_for(record: ArchiveProgress, total_files: int) -> BackupProgress | None:
    """Translate one archive_progress record into a progress tick, if it carries one."""
    if record.finished:
        return BackupProgress(total_files=total_files, processed_files=total_files)
    if total_files > 0 and record.nfiles > 0:
        return BackupProgress(total_files=total_files, processed_files=record.nfiles)
    return None


def _create_args(target: str, backup_paths: Sequence[str], exclude_paths: Sequence[str]) -> list[str]:
    args = [target, *backup_paths]
    for exclude in exclude_paths:
        args.extend(["--exclude", exclude])
    return args


async def create_archive(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
    prefix: str,
    backup_paths: Sequence[str],
    exclude_paths: Sequence[str] = (),
    *,
    progress: asyncio.Queue[BackupProgress | None] | None = None,
    cancel: asyncio.Event | None = None,
) -> tuple[str, Status]:
    """Create a new archive of ``backup_paths``.

    A dry run lists the files first so progress can be reported as
    ``(total_files, processed_files)``. Ticks are put on ``progress`` in order,
    followed by a ``None`` sentinel once the operation has ended, whatever the
    outcome. A final ``processed == total`` tick is only sent when borg reports
    that it finished.

    Args:
        ctx: Borg context
        repo_url: Repository location
        passphrase: Repository passphrase ("" for unencrypted repositories)
        prefix: Archive name prefix of the backup profile
        backup_paths: Paths to back up
        exclude_paths: Patterns passed as ``--exclude``
        progress: Optional queue receiving progress ticks
        cancel: Set to stop the backup

    Returns:
        Tuple of (archive name, status). The name is returned on failure too
        so that callers can clean up a partial archive.
    """
    name = archive_name(prefix)
    target = archive_path(repo_url, name)
    env = ctx.env(passphrase).as_dict()
    paths_args = _create_args(target, backup_paths, exclude_paths)

    try:
        result, status = await ctx.runner.run(
            ctx.borg_path,
            ["create", "--dry-run", "--list", "--log-json", *paths_args],
            env,
            cancel=cancel,
        )
        if not status.is_completed_with_success():
            return name, status
        # one stat per listed path; keep it off the event loop
        total_files = await asyncio.to_thread(count_backup_files, result.output.splitlines())

        processed = 0

        async def forward(record: LogRecord) -> None:
            nonlocal processed
            if progress is None or not isinstance(record, ArchiveProgress):
                return
            tick = progress_for(record, total_files)
            if tick is None or tick.processed_files < processed:
                return
            processed = tick.processed_files
            await progress.put(tick)

        status = await ctx.runner.stream(
            ctx.borg_path,
            ["create", "--progress", "--log-json", *paths_args],
            env,
            on_record=forward,
            cancel=cancel,
        )
        return name, status
    finally:
        if progress is not None:
            await progress.put(None)
