"""Logging infrastructure for borg-pilot."""

from __future__ import annotations

import logging
import socket
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from structlog.typing import EventDict, WrappedLogger

from borgpilot.models import LogLevel

if TYPE_CHECKING:
    from borgpilot.status import Status

__all__ = [
    "configure_logging",
    "get_logger",
    "log_command_start",
    "log_command_status",
]


def _add_hostname(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add hostname to log context if not already present."""
    if "hostname" not in event_dict:
        event_dict["hostname"] = socket.gethostname()
    return event_dict


def configure_logging(
    log_file_level: LogLevel,
    log_cli_level: LogLevel,
    log_file_path: Path | None = None,
) -> None:
    """Configure structlog with JSON file output and colored terminal output.

    Args:
        log_file_level: Minimum level written to the log file
        log_cli_level: Minimum level shown on the terminal
        log_file_path: JSON-lines log file; no file handler when None
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_hostname,
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_cli_level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=True),
            foreign_pre_chain=shared_processors,
        )
    )
    root_logger.addHandler(console_handler)
    level = log_cli_level

    if log_file_path is not None:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path)
        file_handler.setLevel(log_file_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        root_logger.addHandler(file_handler)
        level = min(log_file_level, log_cli_level)

    root_logger.setLevel(level)


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger with bound context.

    Args:
        name: Logger name (typically the module or verb)
        **context: Additional context to bind (e.g., repository, operation id)

    Returns:
        BoundLogger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def log_command_start(logger: structlog.stdlib.BoundLogger, cmd: str) -> None:
    logger.debug("Running command", cmd=cmd)


def log_command_status(
    logger: structlog.stdlib.BoundLogger,
    status: Status,
    cmd: str,
    duration: float,
) -> Status:
    """Log the outcome of a command and hand the status back unchanged."""
    duration = round(duration, 3)
    if status.cancelled:
        logger.info("Command cancelled", cmd=cmd, duration=duration)
    elif status.error is not None:
        logger.error(
            "Command failed",
            cmd=cmd,
            duration=duration,
            exit_code=status.error.exit_code,
            category=status.error.category.value,
            error=status.error.message,
            cause=str(status.error.underlying) if status.error.underlying else None,
        )
    elif status.warning is not None:
        logger.warning(
            "Command finished with warning",
            cmd=cmd,
            duration=duration,
            exit_code=status.warning.exit_code,
            warning=status.warning.message,
        )
    else:
        logger.info("Command finished", cmd=cmd, duration=duration)
    return status
