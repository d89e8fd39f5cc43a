"""Decoder for borg's line-oriented JSON log protocol (``--log-json``).

borg writes one JSON object per line to stderr. Each object carries a ``type``
discriminator; human-readable banners (e.g. "Using a pure-python msgpack!")
are interleaved and must be skipped without aborting the stream.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from borgpilot.models import LogLevel

__all__ = [
    "ArchiveProgress",
    "FileStatus",
    "LogMessage",
    "LogRecord",
    "MessageType",
    "ProgressMessage",
    "ProgressPercent",
    "decode_line",
    "decode_stream",
    "parse_borg_time",
    "parse_unix_time",
    "sanitize_output",
]

# Archive start/end and repository timestamps: local time, no timezone
_BORG_TIME_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S")


class MessageType(StrEnum):
    ARCHIVE_PROGRESS = "archive_progress"
    PROGRESS_MESSAGE = "progress_message"
    PROGRESS_PERCENT = "progress_percent"
    FILE_STATUS = "file_status"
    LOG_MESSAGE = "log_message"


def parse_unix_time(value: Any) -> datetime | None:
    """Convert a Unix epoch float (progress and log ``time`` fields) to an aware datetime."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"expected epoch seconds, got {value!r}")
    return datetime.fromtimestamp(value, tz=UTC)


def parse_borg_time(value: Any) -> datetime | None:
    """Parse borg's timezone-less ISO timestamp (e.g. ``2024-12-02T10:28:45.000000``)."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected timestamp string, got {value!r}")
    for fmt in _BORG_TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"unrecognized borg timestamp: {value!r}")


@dataclass(frozen=True)
class ArchiveProgress:
    original_size: int = 0
    compressed_size: int = 0
    deduplicated_size: int = 0
    nfiles: int = 0
    path: str = ""
    time: datetime | None = None
    finished: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArchiveProgress:
        return cls(
            original_size=int(data.get("original_size") or 0),
            compressed_size=int(data.get("compressed_size") or 0),
            deduplicated_size=int(data.get("deduplicated_size") or 0),
            nfiles=int(data.get("nfiles") or 0),
            path=data.get("path") or "",
            time=parse_unix_time(data.get("time")),
            finished=bool(data.get("finished", False)),
        )


@dataclass(frozen=True)
class ProgressMessage:
    operation: int = 0
    msgid: str = ""
    finished: bool = False
    message: str = ""
    time: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressMessage:
        return cls(
            operation=int(data.get("operation") or 0),
            msgid=data.get("msgid") or "",
            finished=bool(data.get("finished", False)),
            message=data.get("message") or "",
            time=parse_unix_time(data.get("time")),
        )


@dataclass(frozen=True)
class ProgressPercent:
    operation: int = 0
    msgid: str = ""
    finished: bool = False
    message: str = ""
    current: int = 0
    total: int = 0
    info: tuple[str, ...] = ()
    time: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressPercent:
        return cls(
            operation=int(data.get("operation") or 0),
            msgid=data.get("msgid") or "",
            finished=bool(data.get("finished", False)),
            message=data.get("message") or "",
            current=int(data.get("current") or 0),
            total=int(data.get("total") or 0),
            info=tuple(str(i) for i in data.get("info") or ()),
            time=parse_unix_time(data.get("time")),
        )


@dataclass(frozen=True)
class FileStatus:
    status: str
    path: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileStatus:
        return cls(status=data["status"], path=data["path"])


@dataclass(frozen=True)
class LogMessage:
    levelname: str
    name: str
    message: str
    msgid: str = ""
    time: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogMessage:
        return cls(
            levelname=data["levelname"],
            name=data.get("name") or "",
            message=data.get("message") or "",
            msgid=data.get("msgid") or "",
            time=parse_unix_time(data.get("time")),
        )

    @property
    def level(self) -> LogLevel:
        """Level as LogLevel; unknown level names count as INFO."""
        try:
            return LogLevel[self.levelname.upper()]
        except KeyError:
            return LogLevel.INFO


type LogRecord = ArchiveProgress | ProgressMessage | ProgressPercent | FileStatus | LogMessage

_DECODERS: dict[MessageType, Callable[[dict[str, Any]], LogRecord]] = {
    MessageType.ARCHIVE_PROGRESS: ArchiveProgress.from_dict,
    MessageType.PROGRESS_MESSAGE: ProgressMessage.from_dict,
    MessageType.PROGRESS_PERCENT: ProgressPercent.from_dict,
    MessageType.FILE_STATUS: FileStatus.from_dict,
    MessageType.LOG_MESSAGE: LogMessage.from_dict,
}


def decode_line(line: str | bytes) -> LogRecord | None:
    """Decode one line of borg output into a typed record.

    Returns:
        The record, or None for banners, unknown types and malformed payloads
    """
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None

    try:
        message_type = MessageType(data.get("type"))
    except (TypeError, ValueError):
        return None

    try:
        return _DECODERS[message_type](data)
    except (KeyError, TypeError, ValueError, OverflowError, OSError):
        return None


async def decode_stream(lines: AsyncIterator[str]) -> AsyncIterator[LogRecord]:
    """Yield typed records from a live line stream, in emission order."""
    async for line in lines:
        record = decode_line(line)
        if record is not None:
            yield record


def sanitize_output(out: str, logger: structlog.stdlib.BoundLogger | None = None) -> str:
    """Drop everything before the first line starting with ``{``.

    borg over ssh may print warnings ahead of the JSON document when stdout and
    stderr are combined. The removed text is logged at warning level.
    """
    out = out.strip()
    if out.startswith("{"):
        return out

    lines = out.split("\n")
    for i, line in enumerate(lines):
        if line.strip().startswith("{"):
            if i > 0 and logger is not None:
                logger.warning("Sanitized output before JSON parsing", removed="\n".join(lines[:i]))
            return "\n".join(lines[i:])
    return out
