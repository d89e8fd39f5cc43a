"""Caller-facing service running arbitrated backup, prune and delete jobs."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

from borgpilot.arbitrator import OperationKind, RepositoryArbitrator, RepositoryBusyError, Reservation
from borgpilot.events import BackupProgressEvent, EventBus, OperationFinishedEvent, OperationStartedEvent
from borgpilot.logger import get_logger
from borgpilot.models import BackupJob, BackupProgress, DeleteJob, OperationId, PruneJob, PruneResult
from borgpilot.operations import BorgContext, create_archive, delete_archives, prune_archives
from borgpilot.status import Status

if TYPE_CHECKING:
    from borgpilot.config import Configuration

__all__ = ["BackupService", "RepositoryBusyError", "RepositoryLookup"]


class RepositoryLookup(Protocol):
    """Narrow view on persistent storage: turns an OperationId into a job."""

    async def backup_job(self, operation_id: OperationId) -> BackupJob: ...

    async def prune_job(self, operation_id: OperationId) -> PruneJob: ...

    async def delete_job(self, operation_id: OperationId) -> DeleteJob: ...


class BackupService:
    """Runs borg jobs for (profile, repository) pairs.

    Every job reserves its repository with the arbitrator first, so conflicting
    requests fail fast with RepositoryBusyError and no borg process is started.
    The reservation is released however the job ends. Each job produces one
    OperationStartedEvent and exactly one OperationFinishedEvent.
    """

    def __init__(
        self,
        ctx: BorgContext,
        lookup: RepositoryLookup,
        arbitrator: RepositoryArbitrator | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._ctx = ctx
        self._lookup = lookup
        self._arbitrator = arbitrator or RepositoryArbitrator()
        self._events = event_bus or EventBus()
        self._logger = get_logger("borgpilot.service")

    @classmethod
    def from_config(cls, ctx: BorgContext, lookup: RepositoryLookup, config: Configuration) -> BackupService:
        """Service whose event bus uses the configured queue size."""
        return cls(ctx, lookup, RepositoryArbitrator(), config.events.event_bus())

    @property
    def arbitrator(self) -> RepositoryArbitrator:
        return self._arbitrator

    @property
    def events(self) -> EventBus:
        return self._events

    async def run_backup(self, operation_id: OperationId) -> tuple[str, Status]:
        """Create a new archive for the profile in the repository.

        Raises:
            RepositoryBusyError: If the backup is already running or the
                repository is occupied
        """
        reservation = self._start(OperationKind.BACKUP, operation_id)
        name: str | None = None
        status = Status.cancelled_status()
        queue: asyncio.Queue[BackupProgress | None] = asyncio.Queue()
        forwarder = asyncio.create_task(self._forward_progress(operation_id, queue))
        try:
            await self._events.deliver(OperationStartedEvent(OperationKind.BACKUP, operation_id))
            job = await self._lookup.backup_job(operation_id)
            name, status = await create_archive(
                self._ctx,
                job.repo_url,
                job.passphrase,
                job.prefix,
                job.backup_paths,
                job.exclude_paths,
                progress=queue,
                cancel=reservation.cancel,
            )
            await forwarder
            return name, status
        except Exception as e:
            status = Status.from_exception(e)
            raise
        finally:
            forwarder.cancel()
            await self._finish(reservation, status, name)

    async def run_prune(self, operation_id: OperationId, *, dry_run: bool | None = None) -> tuple[PruneResult, Status]:
        """Apply the profile's retention rules (and compact).

        Args:
            operation_id: Profile and repository
            dry_run: Override the job's dry-run flag

        Raises:
            RepositoryBusyError: If the repository is occupied
        """
        reservation = self._start(OperationKind.PRUNE, operation_id)
        status = Status.cancelled_status()
        try:
            await self._events.deliver(OperationStartedEvent(OperationKind.PRUNE, operation_id))
            job = await self._lookup.prune_job(operation_id)
            result, status = await prune_archives(
                self._ctx,
                job.repo_url,
                job.passphrase,
                job.prefix,
                job.prune_options,
                dry_run=job.dry_run if dry_run is None else dry_run,
                cancel=reservation.cancel,
            )
            return result, status
        except Exception as e:
            status = Status.from_exception(e)
            raise
        finally:
            await self._finish(reservation, status)

    async def delete_archives(self, operation_id: OperationId) -> Status:
        """Delete all archives of the profile from the repository (and compact).

        Raises:
            RepositoryBusyError: If the repository is occupied
        """
        reservation = self._start(OperationKind.DELETE, operation_id)
        status = Status.cancelled_status()
        try:
            await self._events.deliver(OperationStartedEvent(OperationKind.DELETE, operation_id))
            job = await self._lookup.delete_job(operation_id)
            status = await delete_archives(
                self._ctx, job.repo_url, job.passphrase, job.prefix, cancel=reservation.cancel
            )
            return status
        except Exception as e:
            status = Status.from_exception(e)
            raise
        finally:
            await self._finish(reservation, status)

    async def shutdown(self) -> None:
        """Cancel running jobs and stop leftover borg processes, then close the event bus."""
        for kind in OperationKind:
            for operation_id in self._arbitrator.running(kind):
                self._arbitrator.cancel(kind, operation_id)
        await self._ctx.runner.executor.terminate_all_processes()
        await self._events.close()

    def cancel(self, kind: OperationKind, operation_id: OperationId) -> bool:
        """Stop a running job; its borg process tree is interrupted.

        Returns:
            True if the job was running
        """
        return self._arbitrator.cancel(kind, operation_id)

    def cancel_backup(self, operation_id: OperationId) -> bool:
        return self.cancel(OperationKind.BACKUP, operation_id)

    def get_backup_progress(self, operation_id: OperationId) -> BackupProgress | None:
        return self._arbitrator.get_backup_progress(operation_id)

    def _start(self, kind: OperationKind, operation_id: OperationId) -> Reservation:
        try:
            return self._arbitrator.reserve(kind, operation_id)
        except RepositoryBusyError as e:
            self._logger.warning("Operation rejected", kind=kind.value, operation=str(operation_id), reason=e.reason)
            raise

    async def _forward_progress(self, operation_id: OperationId, queue: asyncio.Queue[BackupProgress | None]) -> None:
        while (progress := await queue.get()) is not None:
            self._arbitrator.update_backup_progress(operation_id, progress)
            self._events.publish(BackupProgressEvent(operation_id, progress))

    async def _finish(self, reservation: Reservation, status: Status, archive_name: str | None = None) -> None:
        self._arbitrator.release(reservation)
        await self._events.deliver(
            OperationFinishedEvent(reservation.kind, reservation.operation_id, status, archive_name)
        )
