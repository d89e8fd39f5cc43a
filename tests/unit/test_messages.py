"""Unit tests for the --log-json decoder."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from borgpilot.messages import (
    ArchiveProgress,
    FileStatus,
    LogMessage,
    ProgressMessage,
    ProgressPercent,
    decode_line,
    decode_stream,
    parse_borg_time,
    parse_unix_time,
    sanitize_output,
)
from borgpilot.models import LogLevel


def line(**fields: object) -> str:
    return json.dumps(fields)


class TestDecodeLine:
    """Tests for decoding single lines."""

    def test_archive_progress(self) -> None:
        record = decode_line(
            line(
                type="archive_progress",
                original_size=1024,
                compressed_size=512,
                deduplicated_size=256,
                nfiles=25,
                path="/home/test/file.txt",
                time=1733135325.5,
            )
        )
        assert isinstance(record, ArchiveProgress)
        assert record.nfiles == 25
        assert record.path == "/home/test/file.txt"
        assert not record.finished
        assert record.time == datetime.fromtimestamp(1733135325.5, tz=UTC)

    def test_archive_progress_finished(self) -> None:
        record = decode_line(line(type="archive_progress", finished=True, time=1733135325.0))
        assert isinstance(record, ArchiveProgress)
        assert record.finished
        assert record.nfiles == 0

    def test_progress_message(self) -> None:
        record = decode_line(
            line(type="progress_message", operation=3, msgid="cache.begin_transaction", finished=False, message="x")
        )
        assert record == ProgressMessage(operation=3, msgid="cache.begin_transaction", message="x")

    def test_progress_percent(self) -> None:
        record = decode_line(line(type="progress_percent", operation=1, current=5, total=10, info=["a", 1]))
        assert isinstance(record, ProgressPercent)
        assert (record.current, record.total) == (5, 10)
        assert record.info == ("a", "1")

    def test_file_status(self) -> None:
        assert decode_line(line(type="file_status", status="A", path="/etc/hosts")) == FileStatus("A", "/etc/hosts")

    def test_log_message(self) -> None:
        record = decode_line(
            line(type="log_message", levelname="ERROR", name="borg.archiver", message="boom", time=1733135325.0)
        )
        assert isinstance(record, LogMessage)
        assert record.level is LogLevel.ERROR
        assert record.name == "borg.archiver"

    def test_unknown_level_counts_as_info(self) -> None:
        record = decode_line(line(type="log_message", levelname="NOTICE", name="borg", message="hi"))
        assert isinstance(record, LogMessage)
        assert record.level is LogLevel.INFO

    def test_bytes_input(self) -> None:
        assert decode_line(line(type="file_status", status="M", path="/x").encode()) == FileStatus("M", "/x")

    @pytest.mark.parametrize(
        "raw",
        [
            "Using a pure-python msgpack! This will result in lower performance.",
            "",
            "{not json",
            "[1, 2, 3]",
            '"string"',
            line(type="question_prompt", msg="?"),
            line(no_type=True),
            line(type="file_status", status="A"),
            line(type="log_message", message="missing levelname"),
            line(type="archive_progress", time="yesterday"),
            b"\xff\xfe",
        ],
    )
    def test_garbage_is_skipped(self, raw: str | bytes) -> None:
        assert decode_line(raw) is None

    def test_decoding_is_deterministic(self) -> None:
        raw = line(type="archive_progress", nfiles=3, time=1.0)
        assert decode_line(raw) == decode_line(raw)


class TestDecodeStream:
    """Tests for the async record stream."""

    async def test_banners_are_skipped_and_order_kept(self) -> None:
        async def lines() -> AsyncIterator[str]:
            yield "Using a pure-python msgpack! This will result in lower performance.\n"
            yield line(type="file_status", status="A", path="/a") + "\n"
            yield "garbage\n"
            yield line(type="file_status", status="A", path="/b") + "\n"
            yield line(type="archive_progress", finished=True) + "\n"

        records = [record async for record in decode_stream(lines())]

        assert records == [FileStatus("A", "/a"), FileStatus("A", "/b"), ArchiveProgress(finished=True)]


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_unix_time(self) -> None:
        assert parse_unix_time(None) is None
        assert parse_unix_time(0) == datetime(1970, 1, 1, tzinfo=UTC)

    def test_unix_time_rejects_strings(self) -> None:
        with pytest.raises(ValueError):
            parse_unix_time("1733135325")

    def test_borg_time(self) -> None:
        assert parse_borg_time("2024-12-02T10:28:45.000000") == datetime(2024, 12, 2, 10, 28, 45)
        assert parse_borg_time("2024-12-02T10:28:45") == datetime(2024, 12, 2, 10, 28, 45)
        assert parse_borg_time("") is None

    def test_borg_time_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_borg_time("02.12.2024")


class TestSanitizeOutput:
    """Tests for stripping banners ahead of a JSON document."""

    def test_clean_output_unchanged(self) -> None:
        assert sanitize_output('  {"a": 1}\n') == '{"a": 1}'

    def test_single_banner_removed(self) -> None:
        logger = MagicMock()
        out = sanitize_output('Remote: Warning\n{\n  "a": 1\n}', logger)
        assert json.loads(out) == {"a": 1}
        logger.warning.assert_called_once()

    def test_multi_line_banner_removed(self) -> None:
        out = sanitize_output('line one\nline two\n  line three\n{"a": [1, 2]}')
        assert json.loads(out) == {"a": [1, 2]}

    def test_no_json_returns_input(self) -> None:
        assert sanitize_output("no json here") == "no json here"
