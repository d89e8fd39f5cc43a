"""Configuration loading and validation for borg-pilot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from pytimeparse2 import parse as parse_duration_seconds

from borgpilot.events import EventBus
from borgpilot.models import ConfigError, LogLevel
from borgpilot.poller import AuthenticatedHandler, AuthStatus, SessionManager, StreamOpener, poll_session

__all__ = [
    "Configuration",
    "ConfigurationError",
    "EventsConfig",
    "PollerConfig",
    "parse_duration",
]


@dataclass
class PollerConfig:
    """Authentication session polling."""

    retry_interval: float = 30.0  # Seconds
    max_retries: int = 20
    session_lifetime: float = 600.0  # Seconds
    session_cleanup_delay: float = 300.0  # Seconds

    def session_manager(self) -> SessionManager:
        """SessionManager using the configured lifetime and cleanup delay."""
        return SessionManager(
            lifetime=timedelta(seconds=self.session_lifetime),
            cleanup_delay=timedelta(seconds=self.session_cleanup_delay),
        )

    async def poll(
        self,
        session_id: str,
        open_stream: StreamOpener,
        *,
        on_authenticated: AuthenticatedHandler | None = None,
        event_bus: EventBus | None = None,
    ) -> AuthStatus:
        """Run poll_session with the configured lifetime, retry interval and retry limit."""
        return await poll_session(
            session_id,
            open_stream,
            lifetime=self.session_lifetime,
            retry_interval=self.retry_interval,
            max_retries=self.max_retries,
            on_authenticated=on_authenticated,
            event_bus=event_bus,
        )


@dataclass
class EventsConfig:
    queue_size: int = 100  # Per consumer

    def event_bus(self) -> EventBus:
        return EventBus(queue_size=self.queue_size)


@dataclass
class Configuration:
    """Parsed and validated configuration from YAML file."""

    borg_path: str = "borg"
    borg_mount_path: str = ""  # Empty = use borg_path
    ssh_private_keys: list[str] = field(default_factory=list)
    log_file_level: LogLevel = LogLevel.DEBUG
    log_cli_level: LogLevel = LogLevel.INFO
    mount_root: Path | None = None
    poller: PollerConfig = field(default_factory=PollerConfig)
    events: EventsConfig = field(default_factory=EventsConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> Configuration:
        """Load and validate configuration from YAML file.

        Args:
            path: Path to config.yaml

        Returns:
            Validated Configuration instance

        Raises:
            ConfigurationError: If YAML is invalid or schema validation fails
        """
        errors: list[ConfigError] = []

        # Step 1: Load YAML with error handling for syntax
        try:
            with path.open() as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            errors.append(ConfigError(path=str(path), message=f"Configuration file not found: {path}"))
            raise ConfigurationError(errors) from None
        except yaml.YAMLError as e:
            error_msg = str(e)
            if hasattr(e, "problem_mark") and hasattr(e, "problem"):
                mark = e.problem_mark  # type: ignore[attr-defined]
                problem = e.problem  # type: ignore[attr-defined]
                if mark is not None and problem is not None:
                    error_msg = f"YAML syntax error at line {mark.line + 1}, column {mark.column + 1}: {problem}"
            errors.append(ConfigError(path=str(path), message=error_msg))
            raise ConfigurationError(errors) from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Configuration:
        """Validate an already parsed configuration mapping.

        Raises:
            ConfigurationError: With every problem found, not just the first
        """
        errors: list[ConfigError] = []

        # Step 2: Validate against schema with jsonschema
        validator = jsonschema.Draft7Validator(_load_schema())
        for error in validator.iter_errors(data):
            path_parts = list(error.absolute_path)
            path_str = ".".join(str(p) for p in path_parts) if path_parts else "root"
            errors.append(ConfigError(path=path_str, message=error.message))

        if errors:
            raise ConfigurationError(errors)

        # Step 3: Parse log levels and durations
        log_levels: dict[str, LogLevel] = {}
        for key, default in (("log_file_level", "DEBUG"), ("log_cli_level", "INFO")):
            try:
                log_levels[key] = _parse_log_level(data.get(key, default))
            except ValueError as e:
                errors.append(ConfigError(path=key, message=str(e)))

        poller_data = data.get("poller", {})
        durations: dict[str, float] = {}
        for key, default in (
            ("retry_interval", "30s"),
            ("session_lifetime", "10 minutes"),
            ("session_cleanup_delay", "5 minutes"),
        ):
            try:
                durations[key] = parse_duration(poller_data.get(key, default))
            except ValueError as e:
                errors.append(ConfigError(path=f"poller.{key}", message=str(e)))

        if errors:
            raise ConfigurationError(errors)

        # Step 4: Apply defaults for missing fields and build dataclass instances
        mount_root = data.get("mount_root")
        return cls(
            borg_path=data.get("borg_path", "borg"),
            borg_mount_path=data.get("borg_mount_path", ""),
            ssh_private_keys=[str(Path(p).expanduser()) for p in data.get("ssh_private_keys", [])],
            log_file_level=log_levels["log_file_level"],
            log_cli_level=log_levels["log_cli_level"],
            mount_root=Path(mount_root).expanduser() if mount_root else None,
            poller=PollerConfig(
                retry_interval=durations["retry_interval"],
                max_retries=poller_data.get("max_retries", 20),
                session_lifetime=durations["session_lifetime"],
                session_cleanup_delay=durations["session_cleanup_delay"],
            ),
            events=EventsConfig(queue_size=data.get("events", {}).get("queue_size", 100)),
        )

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default config file path."""
        return Path.home() / ".config" / "borg-pilot" / "config.yaml"


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, errors: list[ConfigError]) -> None:
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


def parse_duration(value: str | int | float) -> float:
    """Parse a duration such as "30s", "10 minutes" or a plain number of seconds.

    Raises:
        ValueError: If the duration format is invalid or negative
    """
    if isinstance(value, int | float) and not isinstance(value, bool):
        seconds: Any = value
    else:
        seconds = parse_duration_seconds(str(value))
    if seconds is None:
        raise ValueError(f"Invalid duration format: {value}")
    # pytimeparse2 returns int, float, or timedelta - convert to total seconds first
    total = seconds.total_seconds() if isinstance(seconds, timedelta) else float(seconds)
    if total < 0:
        raise ValueError(f"Duration must not be negative: {value}")
    return total


def _load_schema() -> dict[str, Any]:
    """Load the config schema from package resources."""
    schema_path = Path(__file__).parent / "schemas" / "config-schema.yaml"
    with schema_path.open() as f:
        return yaml.safe_load(f)


def _parse_log_level(value: str) -> LogLevel:
    """Parse a log level string to LogLevel enum."""
    try:
        return LogLevel[value.upper()]
    except KeyError as e:
        valid_levels = ", ".join(level.name for level in LogLevel)
        raise ValueError(f"Invalid log level: {value}. Valid levels: {valid_levels}") from e
