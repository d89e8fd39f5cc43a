"""Core types and dataclasses for borg-pilot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from borgpilot.status import Status

__all__ = [
    "ArchiveInfo",
    "ArchiveListEntry",
    "ArchiveStats",
    "BackupJob",
    "BackupProgress",
    "Cache",
    "CacheStats",
    "CheckResult",
    "CommandResult",
    "ConfigError",
    "DeleteJob",
    "InfoResponse",
    "KeepArchive",
    "ListResponse",
    "LogLevel",
    "OperationId",
    "PruneArchive",
    "PruneJob",
    "PruneResult",
    "RepositoryInfo",
]


class LogLevel(IntEnum):
    """Log levels, numerically compatible with the stdlib logging module."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


@dataclass(frozen=True)
class CommandResult:
    """Result of executing a command via LocalExecutor."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined output, stderr first (borg writes banners and JSON logs there)."""
        return self.stderr + self.stdout


@dataclass(frozen=True)
class OperationId:
    """Arbitration key: one backup profile working on one repository."""

    profile_id: int
    repository_id: int

    def __str__(self) -> str:
        return f"profile-{self.profile_id}/repo-{self.repository_id}"


@dataclass(frozen=True)
class BackupProgress:
    """Progress tick of a running backup, delivered on the progress channel."""

    total_files: int
    processed_files: int


@dataclass(frozen=True)
class ConfigError:
    """A single configuration validation problem."""

    path: str  # dotted path to the invalid value
    message: str


# -------- Job descriptors --------


@dataclass(frozen=True)
class BackupJob:
    """Everything needed to run one backup of a profile into a repository."""

    id: OperationId
    repo_url: str
    passphrase: str
    prefix: str
    backup_paths: tuple[str, ...]
    exclude_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class PruneJob:
    """Retention run over the archives of a profile, identified by prefix."""

    id: OperationId
    repo_url: str
    passphrase: str
    prefix: str
    prune_options: tuple[str, ...]  # e.g. ("--keep-daily", "7")
    dry_run: bool = False


@dataclass(frozen=True)
class DeleteJob:
    """Removal of every archive of a profile from a repository."""

    id: OperationId
    repo_url: str
    passphrase: str
    prefix: str


# -------- borg JSON responses --------


@dataclass(frozen=True)
class RepositoryInfo:
    id: str = ""
    last_modified: str = ""
    location: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepositoryInfo:
        return cls(
            id=data.get("id", ""),
            last_modified=data.get("last_modified", ""),
            location=data.get("location", ""),
        )


@dataclass(frozen=True)
class CacheStats:
    total_chunks: int = 0
    total_size: int = 0
    total_csize: int = 0
    total_unique_chunks: int = 0
    unique_size: int = 0
    unique_csize: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheStats:
        return cls(
            total_chunks=data.get("total_chunks", 0),
            total_size=data.get("total_size", 0),
            total_csize=data.get("total_csize", 0),
            total_unique_chunks=data.get("total_unique_chunks", 0),
            unique_size=data.get("unique_size", 0),
            unique_csize=data.get("unique_csize", 0),
        )


@dataclass(frozen=True)
class Cache:
    path: str = ""
    stats: CacheStats = field(default_factory=CacheStats)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cache:
        return cls(path=data.get("path", ""), stats=CacheStats.from_dict(data.get("stats") or {}))


@dataclass(frozen=True)
class ArchiveStats:
    compressed_size: int = 0
    deduplicated_size: int = 0
    nfiles: int = 0
    original_size: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArchiveStats:
        return cls(
            compressed_size=data.get("compressed_size", 0),
            deduplicated_size=data.get("deduplicated_size", 0),
            nfiles=data.get("nfiles", 0),
            original_size=data.get("original_size", 0),
        )


@dataclass(frozen=True)
class ArchiveInfo:
    """One entry of ``borg info --json repo::archive``."""

    name: str
    id: str = ""
    hostname: str = ""
    username: str = ""
    comment: str = ""
    start: datetime | None = None
    end: datetime | None = None
    duration: float = 0.0  # seconds
    command_line: tuple[str, ...] = ()
    stats: ArchiveStats = field(default_factory=ArchiveStats)


@dataclass(frozen=True)
class InfoResponse:
    """Decoded ``borg info --json`` output."""

    repository: RepositoryInfo
    encryption_mode: str = ""
    cache: Cache = field(default_factory=Cache)
    security_dir: str = ""
    archives: tuple[ArchiveInfo, ...] = ()


@dataclass(frozen=True)
class ArchiveListEntry:
    """One entry of ``borg list --json``."""

    name: str
    id: str = ""
    archive: str = ""
    barchive: str = ""
    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True)
class ListResponse:
    """Decoded ``borg list --json`` output."""

    repository: RepositoryInfo
    encryption_mode: str = ""
    archives: tuple[ArchiveListEntry, ...] = ()


@dataclass(frozen=True)
class PruneArchive:
    name: str


@dataclass(frozen=True)
class KeepArchive:
    name: str
    reason: str


@dataclass(frozen=True)
class PruneResult:
    """Archives a prune run removed (or would remove) and kept."""

    is_dry_run: bool
    pruned: tuple[PruneArchive, ...] = ()
    kept: tuple[KeepArchive, ...] = ()


@dataclass(frozen=True)
class CheckResult:
    """Outcome of ``borg check``.

    ``error_logs`` holds the ERROR and CRITICAL log lines borg reported; a
    check that found problems can still have a successful ``status``.
    """

    status: Status
    error_logs: tuple[str, ...] = ()

    @property
    def has_findings(self) -> bool:
        return bool(self.error_logs)
