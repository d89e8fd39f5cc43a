"""Unit tests for borg create and its progress feed."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from borgpilot.messages import ArchiveProgress, LogMessage
from borgpilot.models import BackupProgress, CommandResult
from borgpilot.operations import BorgContext, archive_name, count_backup_files, create_archive
from borgpilot.operations.create import progress_for
from borgpilot.status import Status


def file_lines(paths: list[Path]) -> str:
    return "\n".join(json.dumps({"type": "file_status", "status": "-", "path": str(p)}) for p in paths)


def drain(queue: asyncio.Queue[BackupProgress | None]) -> list[BackupProgress]:
    ticks: list[BackupProgress] = []
    while (tick := queue.get_nowait()) is not None:
        ticks.append(tick)
    return ticks


@pytest.fixture
def backup_files(tmp_path: Path) -> list[Path]:
    """42 regular files for the dry run to list."""
    files = []
    for i in range(42):
        path = tmp_path / f"file-{i}.txt"
        path.write_text("x")
        files.append(path)
    return files


class TestArchiveName:
    def test_prefix_and_local_time(self) -> None:
        assert archive_name("home-", datetime(2024, 7, 22, 21, 19, 22)) == "home-2024-07-22-21-19-22"


class TestCountBackupFiles:
    """Tests for counting the files a dry run would back up."""

    def test_counts_existing_regular_files(self, tmp_path: Path) -> None:
        regular = tmp_path / "a.txt"
        regular.write_text("a")
        lines = file_lines([regular, tmp_path, tmp_path / "gone.txt"]).splitlines()
        lines.append("Using a pure-python msgpack! This will result in lower performance.")
        lines.append(json.dumps({"type": "log_message", "levelname": "INFO", "name": "borg", "message": "x"}))

        assert count_backup_files(lines) == 1

    def test_empty(self) -> None:
        assert count_backup_files([]) == 0


class TestProgressFor:
    def test_finished_reports_total(self) -> None:
        assert progress_for(ArchiveProgress(finished=True), 42) == BackupProgress(42, 42)

    def test_tick(self) -> None:
        assert progress_for(ArchiveProgress(nfiles=10), 42) == BackupProgress(42, 10)

    def test_no_tick_without_total_or_files(self) -> None:
        assert progress_for(ArchiveProgress(nfiles=10), 0) is None
        assert progress_for(ArchiveProgress(nfiles=0), 42) is None


class TestCreateArchive:
    """Tests for create_archive()."""

    async def test_progress_sequence(
        self,
        borg_context: BorgContext,
        mock_runner: MagicMock,
        backup_files: list[Path],
        record_stream: Callable[..., Any],
    ) -> None:
        """Dry run counts 42 files; ticks at 10, 25, 42 and finished."""
        mock_runner.run.return_value = (CommandResult(0, "", file_lines(backup_files)), Status.ok())
        mock_runner.stream.side_effect = record_stream(
            [
                ArchiveProgress(nfiles=10),
                LogMessage(levelname="INFO", name="borg", message="working"),
                ArchiveProgress(nfiles=25),
                ArchiveProgress(nfiles=42),
                ArchiveProgress(finished=True),
            ],
            Status.ok(),
        )
        queue: asyncio.Queue[BackupProgress | None] = asyncio.Queue()

        name, status = await create_archive(borg_context, "/repo", "pw", "home-", ["/home"], progress=queue)

        assert status.is_completed_with_success()
        assert name.startswith("home-")
        assert drain(queue) == [
            BackupProgress(42, 10),
            BackupProgress(42, 25),
            BackupProgress(42, 42),
            BackupProgress(42, 42),
        ]

    async def test_progress_never_goes_backwards(
        self,
        borg_context: BorgContext,
        mock_runner: MagicMock,
        backup_files: list[Path],
        record_stream: Callable[..., Any],
    ) -> None:
        mock_runner.run.return_value = (CommandResult(0, "", file_lines(backup_files)), Status.ok())
        mock_runner.stream.side_effect = record_stream(
            [ArchiveProgress(nfiles=20), ArchiveProgress(nfiles=15), ArchiveProgress(nfiles=30)], Status.ok()
        )
        queue: asyncio.Queue[BackupProgress | None] = asyncio.Queue()

        await create_archive(borg_context, "/repo", "pw", "home-", ["/home"], progress=queue)

        assert [t.processed_files for t in drain(queue)] == [20, 30]

    async def test_commands(self, borg_context: BorgContext, mock_runner: MagicMock) -> None:
        name, _ = await create_archive(
            borg_context, "ssh://backup@host/./repo", "pw", "home-", ["/home", "/etc"], ["*.cache"]
        )

        target = f"ssh://backup@host/./repo::{name}"
        dry_run_args = mock_runner.run.call_args.args[1]
        assert dry_run_args == [
            "create", "--dry-run", "--list", "--log-json", target, "/home", "/etc", "--exclude", "*.cache"
        ]
        create_args = mock_runner.stream.call_args.args[1]
        assert create_args == ["create", "--progress", "--log-json", target, "/home", "/etc", "--exclude", "*.cache"]
        env = mock_runner.stream.call_args.args[2]
        assert env["BORG_PASSPHRASE"] == "pw"
        assert "-i /keys/id_ed25519" in env["BORG_RSH"]

    async def test_dry_run_failure_skips_create(self, borg_context: BorgContext, mock_runner: MagicMock) -> None:
        mock_runner.run.return_value = (CommandResult(52, "", ""), Status.from_exit_code(52))
        queue: asyncio.Queue[BackupProgress | None] = asyncio.Queue()

        name, status = await create_archive(borg_context, "/repo", "wrong", "home-", ["/home"], progress=queue)

        assert status.error_message == "incorrect passphrase"
        assert name.startswith("home-")
        mock_runner.stream.assert_not_called()
        assert queue.get_nowait() is None

    async def test_cancel_event_forwarded(self, borg_context: BorgContext, mock_runner: MagicMock) -> None:
        cancel = asyncio.Event()
        mock_runner.stream.return_value = Status.cancelled_status()

        _, status = await create_archive(borg_context, "/repo", "pw", "home-", ["/home"], cancel=cancel)

        assert status.cancelled
        assert mock_runner.run.call_args.kwargs["cancel"] is cancel
        assert mock_runner.stream.call_args.kwargs["cancel"] is cancel

    async def test_sentinel_sent_on_exception(self, borg_context: BorgContext, mock_runner: MagicMock) -> None:
        mock_runner.stream.side_effect = RuntimeError("consumer failed")
        queue: asyncio.Queue[BackupProgress | None] = asyncio.Queue()

        with pytest.raises(RuntimeError):
            await create_archive(borg_context, "/repo", "pw", "home-", ["/home"], progress=queue)

        assert queue.get_nowait() is None

    async def test_file_count_does_not_block_event_loop(
        self, borg_context: BorgContext, mock_runner: MagicMock
    ) -> None:
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        def slow_count(lines: Any) -> int:
            time.sleep(0.3)
            return 200_000

        task = asyncio.create_task(ticker())
        try:
            with patch("borgpilot.operations.create.count_backup_files", side_effect=slow_count):
                _, status = await create_archive(borg_context, "/repo", "pw", "home-", ["/home"])
        finally:
            task.cancel()

        assert status.is_completed_with_success()
        assert ticks >= 5
