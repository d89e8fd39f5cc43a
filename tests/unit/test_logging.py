"""Unit tests for logging infrastructure."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import structlog

from borgpilot.logger import configure_logging, get_logger, log_command_status
from borgpilot.models import LogLevel
from borgpilot.status import Status


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Put the root logger and structlog back the way the test found them."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestConfigureLogging:
    """Tests for the JSON file and terminal handlers."""

    @pytest.mark.usefixtures("restore_logging")
    def test_file_receives_json_lines(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "borg-pilot.log"
        configure_logging(LogLevel.DEBUG, LogLevel.CRITICAL, log_file)

        get_logger("borgpilot.test", repository="/repo").info("Command finished", cmd="borg list /repo")
        for handler in logging.getLogger().handlers:
            handler.flush()

        record = json.loads(log_file.read_text().splitlines()[-1])
        assert record["event"] == "Command finished"
        assert record["repository"] == "/repo"
        assert record["cmd"] == "borg list /repo"
        assert record["level"] == "info"
        assert "timestamp" in record
        assert "hostname" in record

    @pytest.mark.usefixtures("restore_logging")
    def test_file_level_filters(self, tmp_path: Path) -> None:
        log_file = tmp_path / "borg-pilot.log"
        configure_logging(LogLevel.WARNING, LogLevel.CRITICAL, log_file)

        logger = get_logger("borgpilot.test")
        logger.info("dropped")
        logger.warning("kept")
        for handler in logging.getLogger().handlers:
            handler.flush()

        events = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
        assert events == ["kept"]

    @pytest.mark.usefixtures("restore_logging")
    def test_without_file(self) -> None:
        configure_logging(LogLevel.DEBUG, LogLevel.INFO)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == LogLevel.INFO


class TestLogCommandStatus:
    """Tests for command outcome logging."""

    def test_success_logged_at_info(self) -> None:
        logger = MagicMock()
        status = Status.ok()

        assert log_command_status(logger, status, "borg info /repo", 0.1234) is status
        logger.info.assert_called_once_with("Command finished", cmd="borg info /repo", duration=0.123)

    def test_error_logged_with_category(self) -> None:
        logger = MagicMock()

        log_command_status(logger, Status.from_exit_code(52), "borg info /repo", 1.0)

        kwargs = logger.error.call_args.kwargs
        assert kwargs["exit_code"] == 52
        assert kwargs["category"] == "passphrase"

    def test_warning(self) -> None:
        logger = MagicMock()

        log_command_status(logger, Status.from_exit_code(100), "borg create", 1.0)

        assert logger.warning.call_args.kwargs["warning"] == "file changed during backup"

    def test_cancelled(self) -> None:
        logger = MagicMock()

        log_command_status(logger, Status.cancelled_status(), "borg create", 1.0)

        logger.info.assert_called_once()
        logger.error.assert_not_called()
