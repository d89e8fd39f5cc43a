"""Bounded, deadline-aware polling of authentication sessions.

An authentication handshake is started elsewhere (e.g. a login link sent by
mail). The client then waits on a status stream for the session until it
becomes terminal. Opening the stream can fail and streams can end early, so
the poller retries with a fixed interval, a bounded number of times, and
never outlives the session's lifetime.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum

import structlog

from borgpilot.events import AuthStatusEvent, EventBus
from borgpilot.logger import get_logger

__all__ = [
    "AuthSession",
    "AuthStatus",
    "AuthStatusUpdate",
    "AuthenticatedHandler",
    "SessionManager",
    "StreamOpener",
    "TokenPair",
    "poll_session",
]

DEFAULT_SESSION_LIFETIME = timedelta(minutes=10)
DEFAULT_CLEANUP_DELAY = timedelta(minutes=5)
DEFAULT_RETRY_INTERVAL = 30.0
DEFAULT_MAX_RETRIES = 20
STREAM_QUEUE_SIZE = 10


class AuthStatus(StrEnum):
    PENDING = "PENDING"
    AUTHENTICATED = "AUTHENTICATED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not AuthStatus.PENDING


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # seconds


@dataclass
class AuthSession:
    """Server-side view of one authentication handshake."""

    session_id: str
    status: AuthStatus
    expires_at: datetime
    user_email: str = ""
    user_id: str = ""
    tokens: TokenPair | None = None
    terminal_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.status is AuthStatus.PENDING and now > self.expires_at


@dataclass(frozen=True)
class AuthStatusUpdate:
    """One message on a session status stream."""

    session_id: str
    status: AuthStatus
    user_id: str = ""
    tokens: TokenPair | None = None

    @classmethod
    def from_session(cls, session: AuthSession) -> AuthStatusUpdate:
        if session.status is AuthStatus.AUTHENTICATED:
            return cls(session.session_id, session.status, session.user_id, session.tokens)
        return cls(session.session_id, session.status)


def _now() -> datetime:
    return datetime.now(UTC)


class SessionManager:
    """In-memory store of authentication sessions with status subscriptions.

    Pending sessions turn EXPIRED once ``expires_at`` has passed. Sessions in a
    terminal state are removed ``cleanup_delay`` later by ``sweep()``.
    """

    def __init__(
        self,
        lifetime: timedelta = DEFAULT_SESSION_LIFETIME,
        cleanup_delay: timedelta = DEFAULT_CLEANUP_DELAY,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._lifetime = lifetime
        self._cleanup_delay = cleanup_delay
        self._sessions: dict[str, AuthSession] = {}
        self._streams: dict[str, list[asyncio.Queue[AuthStatusUpdate]]] = {}
        self._logger = logger or get_logger("borgpilot.poller")

    def create_session(self, session_id: str, user_email: str = "") -> AuthSession:
        session = AuthSession(
            session_id=session_id,
            status=AuthStatus.PENDING,
            expires_at=_now() + self._lifetime,
            user_email=user_email,
        )
        self._sessions[session_id] = session
        return replace(session)

    def get_session(self, session_id: str) -> AuthSession | None:
        """Snapshot of a session, None if unknown or already cleaned up."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = _now()
        if session.is_expired(now):
            self._set_status(session, AuthStatus.EXPIRED, now)
        return replace(session)

    def update_status(
        self,
        session_id: str,
        status: AuthStatus,
        user_id: str = "",
        tokens: TokenPair | None = None,
    ) -> bool:
        """Set the status of a session and notify its subscribers.

        Returns:
            False if the session does not exist
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if user_id:
            session.user_id = user_id
        if tokens is not None:
            session.tokens = tokens
        self._set_status(session, status, _now())
        return True

    def subscribe(self, session_id: str) -> asyncio.Queue[AuthStatusUpdate]:
        queue: asyncio.Queue[AuthStatusUpdate] = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)
        self._streams.setdefault(session_id, []).append(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue[AuthStatusUpdate]) -> None:
        streams = self._streams.get(session_id, [])
        if queue in streams:
            streams.remove(queue)
        if not streams:
            self._streams.pop(session_id, None)

    async def stream_updates(
        self,
        session_id: str,
        interval: float = 2.0,
    ) -> AsyncIterator[AuthStatusUpdate]:
        """Yield the session status every ``interval`` seconds until it is terminal.

        Ends when the session disappears or the session lifetime has passed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._lifetime.total_seconds()
        while True:
            session = self.get_session(session_id)
            if session is None:
                return
            yield AuthStatusUpdate.from_session(session)
            remaining = deadline - loop.time()
            if session.status.is_terminal or remaining <= 0:
                return
            await asyncio.sleep(min(interval, remaining))

    def sweep(self, now: datetime | None = None) -> list[str]:
        """Expire overdue pending sessions and drop terminal ones past the cleanup delay.

        Returns:
            IDs of the removed sessions
        """
        now = now or _now()
        removed: list[str] = []
        for session_id, session in list(self._sessions.items()):
            if session.is_expired(now):
                self._set_status(session, AuthStatus.EXPIRED, now)
            elif session.terminal_at is not None and now >= session.terminal_at + self._cleanup_delay:
                del self._sessions[session_id]
                self._streams.pop(session_id, None)
                removed.append(session_id)
        return removed

    async def run_cleanup(self, interval: float = 60.0) -> None:
        """Call ``sweep()`` periodically until cancelled."""
        while True:
            await asyncio.sleep(interval)
            removed = self.sweep()
            if removed:
                self._logger.debug("Removed auth sessions", sessions=removed)

    def _set_status(self, session: AuthSession, status: AuthStatus, now: datetime) -> None:
        session.status = status
        if status.is_terminal and session.terminal_at is None:
            session.terminal_at = now
        self._broadcast(session)

    def _broadcast(self, session: AuthSession) -> None:
        update = AuthStatusUpdate.from_session(session)
        for queue in self._streams.get(session.session_id, []):
            try:
                queue.put_nowait(update)
            except asyncio.QueueFull:
                self._logger.debug("Dropped auth status update", session_id=session.session_id)


type StreamOpener = Callable[[str], Awaitable[AsyncIterator[AuthStatusUpdate]]]
type AuthenticatedHandler = Callable[[AuthStatusUpdate], Awaitable[None] | None]


async def _wait_for_terminal(
    session_id: str,
    open_stream: StreamOpener,
    retry_interval: float,
    max_retries: int,
    logger: structlog.stdlib.BoundLogger,
) -> AuthStatusUpdate | None:
    retries = 0
    while True:
        try:
            stream = await open_stream(session_id)
        except Exception as e:
            logger.warning(
                "Failed to open auth status stream", session_id=session_id, attempt=retries + 1, error=str(e)
            )
        else:
            retries = 0
            try:
                async for update in stream:
                    if update.status.is_terminal:
                        return update
            except Exception as e:
                logger.warning("Auth status stream failed", session_id=session_id, error=str(e))
            else:
                logger.debug("Auth status stream ended without result", session_id=session_id)

        retries += 1
        if retries > max_retries:
            logger.warning("Giving up on auth session", session_id=session_id, retries=max_retries)
            return None
        await asyncio.sleep(retry_interval)


async def poll_session(
    session_id: str,
    open_stream: StreamOpener,
    *,
    lifetime: float = DEFAULT_SESSION_LIFETIME.total_seconds(),
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    max_retries: int = DEFAULT_MAX_RETRIES,
    on_authenticated: AuthenticatedHandler | None = None,
    event_bus: EventBus | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> AuthStatus:
    """Wait until an authentication session reaches a terminal state.

    Every wait (retry timer and stream reads) is bounded by ``lifetime``.
    Running out of time or retries counts as EXPIRED.

    Args:
        session_id: Session to watch
        open_stream: Opens a status stream for the session; may raise
        lifetime: Seconds after which polling stops
        retry_interval: Seconds between attempts
        max_retries: Consecutive failed attempts tolerated
        on_authenticated: Called once with the AUTHENTICATED update (tokens)
        event_bus: Receives exactly one AuthStatusEvent with the result
        logger: Logger for retries and timeouts

    Returns:
        Terminal status of the session
    """
    logger = logger or get_logger("borgpilot.poller")
    update: AuthStatusUpdate | None = None
    try:
        async with asyncio.timeout(lifetime):
            update = await _wait_for_terminal(session_id, open_stream, retry_interval, max_retries, logger)
    except TimeoutError:
        logger.info("Auth session polling timed out", session_id=session_id)

    status = update.status if update is not None else AuthStatus.EXPIRED
    if update is not None and status is AuthStatus.AUTHENTICATED and on_authenticated is not None:
        outcome = on_authenticated(update)
        if inspect.isawaitable(outcome):
            await outcome
    if event_bus is not None:
        await event_bus.deliver(AuthStatusEvent(session_id=session_id, status=status))
    return status
