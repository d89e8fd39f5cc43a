"""Client-side mutual exclusion for operations on shared repositories.

borg holds an exclusive lock on a repository while it works. Rejecting a
conflicting request here avoids spawning a process that would only fail with
a lock timeout, and lets the caller report "busy" instead.

A repository is occupied by at most one operation at a time: a new backup,
prune or delete is rejected when the same operation is already running or
when any other operation (for any profile) holds the repository.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from enum import StrEnum

from borgpilot.logger import get_logger
from borgpilot.models import BackupProgress, OperationId

__all__ = [
    "OperationKind",
    "RepositoryArbitrator",
    "RepositoryBusyError",
    "Reservation",
]


class OperationKind(StrEnum):
    BACKUP = "backup"
    PRUNE = "prune"
    DELETE = "delete"


class RepositoryBusyError(Exception):
    """Raised when an operation cannot start because of a conflicting one."""

    def __init__(self, operation_id: OperationId, reason: str) -> None:
        super().__init__(f"{operation_id}: {reason}")
        self.operation_id = operation_id
        self.reason = reason


@dataclass
class Reservation:
    """Handle of one running operation; ``cancel`` stops its borg process."""

    kind: OperationKind
    operation_id: OperationId
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    progress: BackupProgress | None = None


class RepositoryArbitrator:
    """Tracks running backup, prune and delete operations.

    All state lives behind a single lock; entries are looked up and removed by
    OperationId equality only.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running: dict[OperationKind, dict[OperationId, Reservation]] = {kind: {} for kind in OperationKind}
        self._occupied: dict[int, Reservation] = {}  # repository id -> holder
        self._logger = get_logger("borgpilot.arbitrator")

    def can_run(self, kind: OperationKind, operation_id: OperationId) -> tuple[bool, str]:
        """Check whether an operation could start now.

        Returns:
            Tuple of (can_run, reason); reason is "" when it can run
        """
        with self._lock:
            return self._check(kind, operation_id)

    def can_run_backup(self, operation_id: OperationId) -> tuple[bool, str]:
        return self.can_run(OperationKind.BACKUP, operation_id)

    def reserve(self, kind: OperationKind, operation_id: OperationId) -> Reservation:
        """Atomically check and reserve the repository for an operation.

        Raises:
            RepositoryBusyError: If the operation conflicts with a running one
        """
        with self._lock:
            ok, reason = self._check(kind, operation_id)
            if not ok:
                raise RepositoryBusyError(operation_id, reason)
            reservation = Reservation(kind=kind, operation_id=operation_id)
            self._running[kind][operation_id] = reservation
            self._occupied[operation_id.repository_id] = reservation
        self._logger.debug("Reserved repository", kind=kind.value, operation=str(operation_id))
        return reservation

    def release(self, reservation: Reservation) -> None:
        """Remove a reservation and cancel its operation if still running.

        Releasing the same reservation twice is a no-op.
        """
        with self._lock:
            running = self._running[reservation.kind]
            if running.get(reservation.operation_id) is not reservation:
                return
            del running[reservation.operation_id]
            if self._occupied.get(reservation.operation_id.repository_id) is reservation:
                del self._occupied[reservation.operation_id.repository_id]
        reservation.cancel.set()
        self._logger.debug("Released repository", kind=reservation.kind.value, operation=str(reservation.operation_id))

    def cancel(self, kind: OperationKind, operation_id: OperationId) -> bool:
        """Request cancellation of a running operation.

        Returns:
            True if a matching operation was running
        """
        with self._lock:
            reservation = self._running[kind].get(operation_id)
        if reservation is None:
            return False
        self._logger.info("Cancelling operation", kind=kind.value, operation=str(operation_id))
        reservation.cancel.set()
        return True

    def is_running(self, kind: OperationKind, operation_id: OperationId) -> bool:
        with self._lock:
            return operation_id in self._running[kind]

    def is_repository_busy(self, repository_id: int) -> bool:
        with self._lock:
            return repository_id in self._occupied

    def running(self, kind: OperationKind) -> list[OperationId]:
        with self._lock:
            return list(self._running[kind])

    def update_backup_progress(self, operation_id: OperationId, progress: BackupProgress) -> None:
        with self._lock:
            reservation = self._running[OperationKind.BACKUP].get(operation_id)
            if reservation is not None:
                reservation.progress = progress

    def get_backup_progress(self, operation_id: OperationId) -> BackupProgress | None:
        """Last progress tick of a running backup, None if unknown or not running."""
        with self._lock:
            reservation = self._running[OperationKind.BACKUP].get(operation_id)
            return reservation.progress if reservation is not None else None

    def _check(self, kind: OperationKind, operation_id: OperationId) -> tuple[bool, str]:
        if operation_id in self._running[kind]:
            return False, f"{kind.value.capitalize()} is already running"
        if operation_id.repository_id in self._occupied:
            return False, "Repository is busy"
        return True, ""
