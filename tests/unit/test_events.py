"""Unit tests for the EventBus delivery policies."""

from __future__ import annotations

import asyncio

from borgpilot.arbitrator import OperationKind
from borgpilot.events import BackupProgressEvent, EventBus, OperationFinishedEvent, OperationStartedEvent
from borgpilot.models import BackupProgress, OperationId
from borgpilot.status import Status

OPERATION = OperationId(profile_id=1, repository_id=7)


def progress_event(processed: int) -> BackupProgressEvent:
    return BackupProgressEvent(OPERATION, BackupProgress(total_files=100, processed_files=processed))


class TestPublish:
    """Tests for best-effort publishing."""

    async def test_all_consumers_receive(self) -> None:
        bus = EventBus()
        first, second = bus.subscribe(), bus.subscribe()

        bus.publish(progress_event(1))

        assert first.get_nowait() == second.get_nowait()

    async def test_full_queue_drops_and_counts(self) -> None:
        bus = EventBus(queue_size=2)
        queue = bus.subscribe()

        for i in range(5):
            bus.publish(progress_event(i))

        assert queue.qsize() == 2
        assert bus.dropped == 3
        received = [queue.get_nowait(), queue.get_nowait()]
        assert [e.progress.processed_files for e in received if isinstance(e, BackupProgressEvent)] == [0, 1]

    async def test_slow_consumer_does_not_block_others(self) -> None:
        bus = EventBus(queue_size=1)
        slow, fast = bus.subscribe(), bus.subscribe()

        bus.publish(progress_event(1))
        fast.get_nowait()
        bus.publish(progress_event(2))

        latest = fast.get_nowait()
        assert isinstance(latest, BackupProgressEvent)
        assert latest.progress.processed_files == 2
        assert slow.qsize() == 1
        assert bus.dropped == 1

    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        queue = bus.subscribe()
        bus.unsubscribe(queue)

        bus.publish(progress_event(1))

        assert queue.empty()


class TestDeliver:
    """Tests for guaranteed delivery of terminal events."""

    async def test_deliver_waits_for_room(self) -> None:
        bus = EventBus(queue_size=1)
        queue = bus.subscribe()
        bus.publish(progress_event(1))
        finished = OperationFinishedEvent(OperationKind.BACKUP, OPERATION, Status.ok(), "home-1")

        delivery = asyncio.create_task(bus.deliver(finished))
        await asyncio.sleep(0)
        assert not delivery.done()

        assert isinstance(queue.get_nowait(), BackupProgressEvent)
        await asyncio.wait_for(delivery, timeout=1)
        assert queue.get_nowait() == finished
        assert bus.dropped == 0

    async def test_close_sends_sentinel_and_stops_publishing(self) -> None:
        bus = EventBus()
        queue = bus.subscribe()
        await bus.deliver(OperationStartedEvent(OperationKind.PRUNE, OPERATION))

        await bus.close()
        bus.publish(progress_event(1))
        await bus.deliver(OperationStartedEvent(OperationKind.PRUNE, OPERATION))

        assert isinstance(queue.get_nowait(), OperationStartedEvent)
        assert queue.get_nowait() is None
        assert queue.empty()
