"""Shared test fixtures for borg-pilot tests."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from borgpilot.models import CommandResult
from borgpilot.operations import BorgContext
from borgpilot.status import Status


@pytest.fixture(scope="session", autouse=True)
def configure_test_logging() -> None:
    """Keep library logs quiet while borgpilot logs stay visible in live logging."""
    logging.getLogger().setLevel(logging.WARNING)
    logging.getLogger("borgpilot").setLevel(logging.DEBUG)
    logging.getLogger("tests").setLevel(logging.DEBUG)


@pytest.fixture
def mock_executor() -> MagicMock:
    """Create a mock LocalExecutor whose processes exit 0 with empty output."""
    process = MagicMock()
    process.pid = 4242
    process.returncode = 0
    process.communicate = AsyncMock(return_value=CommandResult(exit_code=0, stdout="", stderr=""))
    process.wait = AsyncMock(return_value=0)
    process.terminate = AsyncMock()

    executor = MagicMock()
    executor.start_process = AsyncMock(return_value=process)
    executor.terminate_all_processes = AsyncMock()
    return executor


@pytest.fixture
def mock_runner(mock_executor: MagicMock) -> MagicMock:
    """Create a mock CommandRunner whose commands succeed without output."""
    runner = MagicMock()
    runner.executor = mock_executor
    runner.run = AsyncMock(return_value=(CommandResult(exit_code=0, stdout="", stderr=""), Status.ok()))
    runner.stream = AsyncMock(return_value=Status.ok())
    return runner


@pytest.fixture
def borg_context(mock_runner: MagicMock) -> BorgContext:
    """BorgContext wired to the mock runner."""
    return BorgContext(runner=mock_runner, borg_path="/usr/bin/borg", ssh_private_keys=("/keys/id_ed25519",))

