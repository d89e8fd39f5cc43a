"""Event bus for progress and lifecycle notifications."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from borgpilot.models import BackupProgress, OperationId

if TYPE_CHECKING:
    from borgpilot.arbitrator import OperationKind
    from borgpilot.poller import AuthStatus
    from borgpilot.status import Status

__all__ = [
    "AuthStatusEvent",
    "BackupProgressEvent",
    "Event",
    "EventBus",
    "OperationFinishedEvent",
    "OperationStartedEvent",
]

DEFAULT_QUEUE_SIZE = 100


@dataclass(frozen=True)
class BackupProgressEvent:
    """Progress tick of a running backup. May be dropped for slow consumers."""

    operation_id: OperationId
    progress: BackupProgress
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class OperationStartedEvent:
    kind: OperationKind
    operation_id: OperationId
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class OperationFinishedEvent:
    """Terminal event of an operation; carries its final status."""

    kind: OperationKind
    operation_id: OperationId
    status: Status
    archive_name: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class AuthStatusEvent:
    """Terminal event of an authentication session."""

    session_id: str
    status: AuthStatus
    timestamp: datetime = field(default_factory=datetime.now)


type Event = BackupProgressEvent | OperationStartedEvent | OperationFinishedEvent | AuthStatusEvent


class EventBus:
    """Pub/sub event bus with per-consumer bounded queues.

    Two delivery policies:
    - ``publish``: best effort, the event is dropped for a consumer whose queue
      is full. Used for progress ticks where a newer tick supersedes the old.
    - ``deliver``: waits for room in every consumer queue. Used for terminal
      events (operation finished, auth result) that must never be missed.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._consumers: list[asyncio.Queue[Event | None]] = []
        self._closed = False
        self.dropped = 0

    def subscribe(self) -> asyncio.Queue[Event | None]:
        """Create and return a new consumer queue.

        The queue will receive all events published after subscription.
        When the EventBus is closed, a None sentinel is sent to signal shutdown.
        """
        queue: asyncio.Queue[Event | None] = asyncio.Queue(maxsize=self._queue_size)
        self._consumers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event | None]) -> None:
        if queue in self._consumers:
            self._consumers.remove(queue)

    def publish(self, event: Event) -> None:
        """Publish event to all consumer queues without waiting.

        Events are dropped silently if the bus is closed, and per consumer if
        that consumer's queue is full.
        """
        if self._closed:
            return
        for queue in self._consumers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1

    async def deliver(self, event: Event) -> None:
        """Publish event to all consumer queues, waiting for room where needed."""
        if self._closed:
            return
        for queue in list(self._consumers):
            await queue.put(event)

    async def close(self) -> None:
        """Signal consumers to drain and exit.

        Sends None sentinel to all consumer queues. Further publish() calls
        are silently ignored.
        """
        self._closed = True
        for queue in self._consumers:
            await queue.put(None)  # Sentinel value
