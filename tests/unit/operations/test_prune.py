"""Unit tests for borg prune output parsing and the prune + compact sequence."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from borgpilot.messages import LogMessage
from borgpilot.models import CommandResult, KeepArchive, PruneArchive
from borgpilot.operations import BorgContext, prune_archives
from borgpilot.operations.prune import parse_keep_reason, parse_prune_message, parse_prune_name
from borgpilot.status import WARNING_GENERIC, Status

KEEP_DAILY_1 = (
    "Keeping archive (rule: daily #1):            down-2024-07-22-21-19-22             "
    "Mon, 2024-07-22 21:19:23 [c8396fd6b334e09fa8e91d213039f91533b047bb22103a30613443ed7cdfc4056]"
)
WOULD_PRUNE = (
    "Would prune:                                 down-2024-07-22-21-19-20             "
    "Mon, 2024-07-22 21:19:21 [36535bbf6b2e563e805c73be8827d4c648cc39e2ad9eb82fa8b097ff52899019]"
)
KEEP_DAILY_2 = (
    "Keeping archive (rule: daily #2):            down-2024-07-21-18-16-03             "
    "Sun, 2024-07-21 18:16:04 [d22f69e1c874bff4d26a1d14440d1b8c0e12d968745145bb7f10e796a1912ff1]"
)
KEEP_OLDEST = (
    "Keeping archive (rule: daily[oldest] #3):    down-2024-07-21-16-21-11             "
    "Sun, 2024-07-21 16:21:12 [3dbb5b8b7eff848fb2fa3b4455ddc0af81fed0f125bd18e9799a065b014ab166]"
)
PRUNING = (
    "Pruning archive (1/1):                       down-2024-07-20-09-00-00             "
    "Sat, 2024-07-20 09:00:01 [4dbb5b8b7eff848fb2fa3b4455ddc0af81fed0f125bd18e9799a065b014ab166]"
)
TERMINATING = "terminating with success status, rc 0"


def log(message: str) -> LogMessage:
    return LogMessage(levelname="INFO", name="borg.output.list", message=message)


class TestParsePruneReason:
    @pytest.mark.parametrize(
        ("message", "reason"),
        [
            (KEEP_DAILY_1, "daily #1"),
            (WOULD_PRUNE, ""),
            (KEEP_DAILY_2, "daily #2"),
            (KEEP_OLDEST, "daily[oldest] #3"),
            (TERMINATING, ""),
        ],
    )
    def test_reason(self, message: str, reason: str) -> None:
        assert parse_keep_reason(message) == reason


class TestParsePruneName:
    @pytest.mark.parametrize(
        ("message", "name"),
        [
            (KEEP_DAILY_1, "down-2024-07-22-21-19-22"),
            (WOULD_PRUNE, "down-2024-07-22-21-19-20"),
            (KEEP_DAILY_2, "down-2024-07-21-18-16-03"),
            (KEEP_OLDEST, "down-2024-07-21-16-21-11"),
            (TERMINATING, ""),
        ],
    )
    def test_name(self, message: str, name: str) -> None:
        assert parse_prune_name(message) == name


class TestParsePruneMessage:
    def test_keep(self) -> None:
        assert parse_prune_message(KEEP_DAILY_1) == KeepArchive("down-2024-07-22-21-19-22", "daily #1")

    def test_would_prune(self) -> None:
        assert parse_prune_message(WOULD_PRUNE) == PruneArchive("down-2024-07-22-21-19-20")

    def test_pruning(self) -> None:
        assert parse_prune_message(PRUNING) == PruneArchive("down-2024-07-20-09-00-00")

    def test_other_messages_ignored(self) -> None:
        assert parse_prune_message(TERMINATING) is None


class TestPruneArchives:
    """Tests for prune_archives()."""

    async def test_dry_run_collects_results_without_compact(
        self, borg_context: BorgContext, mock_runner: MagicMock, record_stream: Callable[..., Any]
    ) -> None:
        mock_runner.stream.side_effect = record_stream(
            [log(KEEP_DAILY_1), log(WOULD_PRUNE), log(KEEP_OLDEST), log(TERMINATING)], Status.ok()
        )

        result, status = await prune_archives(
            borg_context, "/repo", "pw", "down-", ["--keep-daily", "3"], dry_run=True
        )

        assert status.is_completed_with_success()
        assert result.is_dry_run
        assert result.pruned == (PruneArchive("down-2024-07-22-21-19-20"),)
        assert result.kept == (
            KeepArchive("down-2024-07-22-21-19-22", "daily #1"),
            KeepArchive("down-2024-07-21-16-21-11", "daily[oldest] #3"),
        )
        assert mock_runner.stream.call_args.args[1] == [
            "prune", "--list", "--log-json", "--glob-archives", "down-*", "--dry-run", "--keep-daily", "3", "/repo"
        ]
        mock_runner.run.assert_not_called()

    async def test_real_prune_runs_compact(
        self, borg_context: BorgContext, mock_runner: MagicMock, record_stream: Callable[..., Any]
    ) -> None:
        mock_runner.stream.side_effect = record_stream([log(PRUNING)], Status.ok())

        result, status = await prune_archives(borg_context, "/repo", "pw", "down-", ["--keep-weekly", "4"])

        assert status.is_completed_with_success()
        assert not result.is_dry_run
        assert result.pruned == (PruneArchive("down-2024-07-20-09-00-00"),)
        assert mock_runner.run.call_args.args[1] == ["compact", "/repo"]

    async def test_prune_warning_kept_when_compact_succeeds(
        self, borg_context: BorgContext, mock_runner: MagicMock
    ) -> None:
        mock_runner.stream.return_value = Status.from_exit_code(1)

        _, status = await prune_archives(borg_context, "/repo", "pw", "down-", ["--keep-daily", "1"])

        assert status.warning == WARNING_GENERIC

    async def test_compact_failure_is_reported(self, borg_context: BorgContext, mock_runner: MagicMock) -> None:
        mock_runner.run.return_value = (CommandResult(73, "", ""), Status.from_exit_code(73))

        _, status = await prune_archives(borg_context, "/repo", "pw", "down-", ["--keep-daily", "1"])

        assert status.error is not None
        assert status.error.is_lock_error

    async def test_prune_failure_skips_compact(self, borg_context: BorgContext, mock_runner: MagicMock) -> None:
        mock_runner.stream.return_value = Status.from_exit_code(52)

        _, status = await prune_archives(borg_context, "/repo", "pw", "down-", ["--keep-daily", "1"])

        assert status.error_message == "incorrect passphrase"
        mock_runner.run.assert_not_called()

    async def test_empty_options_rejected(self, borg_context: BorgContext, mock_runner: MagicMock) -> None:
        with pytest.raises(ValueError):
            await prune_archives(borg_context, "/repo", "pw", "down-", [])
        mock_runner.stream.assert_not_called()
