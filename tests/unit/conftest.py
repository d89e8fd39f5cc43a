"""Shared unit test fixtures for borg-pilot tests.

Provides:
- Time-freezing fixtures for deterministic timestamp tests
- A fake record stream for driving CommandRunner.stream callers
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest
from freezegun import freeze_time

from borgpilot.messages import LogRecord
from borgpilot.models import OperationId
from borgpilot.status import Status


@pytest.fixture
def operation_id() -> OperationId:
    return OperationId(profile_id=1, repository_id=7)


@pytest.fixture
def record_stream() -> Callable[[Sequence[LogRecord], Status], Callable[..., Any]]:
    """Factory for a ``CommandRunner.stream`` side effect.

    The returned coroutine function feeds ``records`` to the caller's
    ``on_record`` handler (awaiting it when needed) and returns ``status``.

    Usage:
        mock_runner.stream.side_effect = record_stream([record1, record2], Status.ok())
    """

    def factory(records: Sequence[LogRecord], status: Status) -> Callable[..., Any]:
        async def stream(*args: Any, on_record: Any = None, **kwargs: Any) -> Status:
            for record in records:
                if on_record is not None:
                    outcome = on_record(record)
                    if outcome is not None:
                        await outcome
            return status

        return stream

    return factory


@pytest.fixture
def frozen_time():
    """Time-freezing fixture for deterministic timestamp tests.

    Usage:
        def test_timestamp(frozen_time):
            with frozen_time:
                # Time is frozen to 2025-01-15T10:30:00Z
                ...
    """
    return freeze_time("2025-01-15T10:30:00Z")

