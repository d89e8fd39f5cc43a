"""Exit-code taxonomy of the borg backup engine and the Status result envelope.

borg is always run with ``BORG_EXIT_CODES=modern`` (see :mod:`borgpilot.env`), so
every exit code below is stable across borg releases:

- 0: success
- 1: generic warning (also used by ``check`` to report findings)
- 2-99: errors, grouped by category
- 100-107: specific warnings raised while creating archives

Callers branch on ``category`` rather than on borg's own (locale-dependent) text.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Self

__all__ = [
    "ALL_ERRORS",
    "ALL_WARNINGS",
    "BorgError",
    "BorgWarning",
    "ErrorCategory",
    "OperationCancelledError",
    "Status",
    "classify",
]


class ErrorCategory(StrEnum):
    """Category of a borg error or warning."""

    GENERAL = "general"
    REPOSITORY = "repository"
    ARCHIVE = "archive"
    KEY = "key"
    PASSPHRASE = "passphrase"
    CACHE = "cache"
    LOCK = "lock"
    CONNECTION = "connection"
    INTEGRITY = "integrity"
    BACKUP = "backup"
    PERMISSION = "permission"
    RUNTIME = "runtime"


class _ExitIssue(Exception):
    """Shared behaviour of BorgError and BorgWarning.

    Instances are values: two issues are equal when type, exit code and category
    match, regardless of the attached underlying cause.
    """

    __slots__ = ("_category", "_exit_code", "_message", "_underlying")

    def __init__(
        self,
        exit_code: int,
        message: str,
        category: ErrorCategory,
        underlying: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self._exit_code = exit_code
        self._message = message
        self._category = category
        self._underlying = underlying

    @property
    def exit_code(self) -> int:
        return self._exit_code

    @property
    def message(self) -> str:
        return self._message

    @property
    def category(self) -> ErrorCategory:
        return self._category

    @property
    def underlying(self) -> BaseException | None:
        return self._underlying

    def with_cause(self, underlying: BaseException | None) -> Self:
        """Return a copy of this catalog entry carrying an underlying cause."""
        return type(self)(self._exit_code, self._message, self._category, underlying)

    def with_exit_code(self, exit_code: int) -> Self:
        """Return a copy of this entry reporting a different exit code."""
        return type(self)(exit_code, self._message, self._category, self._underlying)

    def __str__(self) -> str:
        return self._message

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(exit_code={self._exit_code}, "
            f"message={self._message!r}, category={self._category.value!r})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _ExitIssue) or type(other) is not type(self):
            return NotImplemented
        return self._exit_code == other._exit_code and self._category == other._category

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._exit_code, self._category))


class BorgError(_ExitIssue):
    """Fatal classification: the operation did not complete as intended."""

    @property
    def is_lock_error(self) -> bool:
        return self.category is ErrorCategory.LOCK


class BorgWarning(_ExitIssue):
    """Non-fatal classification: the operation completed with caveats."""


class OperationCancelledError(Exception):
    """Raised by Status.raise_for_error() when the operation was cancelled."""

    def __init__(self) -> None:
        super().__init__("command cancelled")


def _error(exit_code: int, message: str, category: ErrorCategory) -> BorgError:
    return BorgError(exit_code, message, category)


_G = ErrorCategory.GENERAL
_REPO = ErrorCategory.REPOSITORY
_ARCH = ErrorCategory.ARCHIVE
_KEY = ErrorCategory.KEY
_PASS = ErrorCategory.PASSPHRASE
_CACHE = ErrorCategory.CACHE
_LOCK = ErrorCategory.LOCK
_CONN = ErrorCategory.CONNECTION
_INT = ErrorCategory.INTEGRITY
_PERM = ErrorCategory.PERMISSION

# -------- errors --------

ERROR_DEFAULT = _error(2, "error", _G)
ERROR_CANCELLED_BY_USER = _error(3, "cancelled by user", _G)
ERROR_COMMAND = _error(4, "command error", _G)
ERROR_PLACEHOLDER = _error(5, "placeholder error", _G)
ERROR_INVALID_PLACEHOLDER = _error(6, "invalid placeholder", _G)

ERROR_REPOSITORY_ALREADY_EXISTS = _error(10, "repository already exists", _REPO)
ERROR_REPOSITORY_ATTIC = _error(11, "attic repository detected", _REPO)
ERROR_REPOSITORY_CHECK_NEEDED = _error(12, "repository check needed", _REPO)
ERROR_REPOSITORY_DOES_NOT_EXIST = _error(13, "repository does not exist", _REPO)
ERROR_REPOSITORY_INSUFFICIENT_FREE_SPACE = _error(14, "insufficient free space", _REPO)
ERROR_REPOSITORY_INVALID = _error(15, "invalid repository", _REPO)
ERROR_REPOSITORY_INVALID_CONFIG = _error(16, "invalid repository config", _REPO)
ERROR_REPOSITORY_OBJECT_NOT_FOUND = _error(17, "object not found in repository", _REPO)
ERROR_REPOSITORY_PARENT_PATH_DOES_NOT_EXIST = _error(18, "parent path does not exist", _REPO)
ERROR_REPOSITORY_PATH_ALREADY_EXISTS = _error(19, "path already exists", _REPO)
ERROR_REPOSITORY_STORAGE_QUOTA_EXCEEDED = _error(20, "storage quota exceeded", _REPO)
ERROR_REPOSITORY_PATH_PERMISSION_DENIED = _error(21, "permission denied to path", _PERM)
ERROR_MANDATORY_FEATURE_UNSUPPORTED = _error(25, "unsupported repository feature", _REPO)
ERROR_NO_MANIFEST = _error(26, "repository has no manifest", _REPO)
ERROR_UNSUPPORTED_MANIFEST = _error(27, "unsupported manifest envelope", _REPO)

ERROR_ARCHIVE_ALREADY_EXISTS = _error(30, "archive already exists", _ARCH)
ERROR_ARCHIVE_DOES_NOT_EXIST = _error(31, "archive does not exist", _ARCH)
ERROR_ARCHIVE_INCOMPATIBLE_FILESYSTEM_ENCODING = _error(32, "failed to encode filename", _ARCH)

ERROR_KEYFILE_INVALID = _error(40, "invalid key data", _KEY)
ERROR_KEYFILE_MISMATCH = _error(41, "mismatch between repository and key file", _KEY)
ERROR_KEYFILE_NOT_FOUND = _error(42, "no key file found", _KEY)
ERROR_NOT_A_BORG_KEY_FILE = _error(43, "not a borg key backup", _KEY)
ERROR_REPO_KEY_NOT_FOUND = _error(44, "no key entry found", _KEY)
ERROR_REPO_ID_MISMATCH = _error(45, "key backup for different repository", _KEY)
ERROR_UNENCRYPTED_REPO = _error(46, "key management not available", _KEY)
ERROR_UNKNOWN_KEY_TYPE = _error(47, "unknown key type", _KEY)
ERROR_UNSUPPORTED_PAYLOAD = _error(48, "unsupported payload type", _KEY)

ERROR_NO_PASSPHRASE = _error(50, "cannot acquire a passphrase", _PASS)
ERROR_PASSCOMMAND_FAILURE = _error(51, "passcommand failed", _PASS)
ERROR_PASSPHRASE_WRONG = _error(52, "incorrect passphrase", _PASS)
ERROR_PASSWORD_RETRIES_EXCEEDED = _error(53, "exceeded password retries", _PASS)

ERROR_CACHE_INIT_ABORTED = _error(60, "cache initialization aborted", _CACHE)
ERROR_CACHE_ENCRYPTION_METHOD_MISMATCH = _error(61, "encryption method mismatch", _CACHE)
ERROR_CACHE_REPOSITORY_ACCESS_ABORTED = _error(62, "repository access aborted", _CACHE)
ERROR_CACHE_REPOSITORY_ID_NOT_UNIQUE = _error(63, "repository ID not unique", _CACHE)
ERROR_CACHE_REPOSITORY_REPLAY = _error(64, "cache newer than repository", _CACHE)

ERROR_LOCK = _error(70, "failed to acquire lock", _LOCK)
ERROR_LOCK_WITH_TRACEBACK = _error(71, "failed to acquire lock with traceback", _LOCK)
ERROR_LOCK_FAILED = _error(72, "failed to create/acquire lock", _LOCK)
ERROR_LOCK_TIMEOUT = _error(73, "lock timeout", _LOCK)
ERROR_NOT_LOCKED = _error(74, "failed to release lock (not locked)", _LOCK)
ERROR_NOT_MY_LOCK = _error(75, "failed to release lock (not by me)", _LOCK)

ERROR_CONNECTION_CLOSED = _error(80, "connection closed by remote host", _CONN)
ERROR_CONNECTION_CLOSED_WITH_HINT = _error(81, "connection closed by remote host with hint", _CONN)
ERROR_INVALID_RPC_METHOD = _error(82, "invalid RPC method", _CONN)
ERROR_PATH_NOT_ALLOWED = _error(83, "repository path not allowed", _PERM)
ERROR_RPC_SERVER_OUTDATED = _error(84, "borg server too old", _CONN)
ERROR_UNEXPECTED_RPC_DATA_FROM_CLIENT = _error(85, "unexpected RPC data format from client", _CONN)
ERROR_UNEXPECTED_RPC_DATA_FROM_SERVER = _error(86, "unexpected RPC data format from server", _CONN)
ERROR_CONNECTION_BROKEN_WITH_HINT = _error(87, "connection to remote host broken", _CONN)

ERROR_INTEGRITY = _error(90, "data integrity error", _INT)
ERROR_FILE_INTEGRITY = _error(91, "file integrity check failed", _INT)
ERROR_DECOMPRESSION = _error(92, "decompression error", _INT)
ERROR_ARCHIVE_TAM_INVALID = _error(95, "archive TAM invalid", _INT)
ERROR_ARCHIVE_TAM_REQUIRED = _error(96, "archive unauthenticated", _INT)
ERROR_TAM_INVALID = _error(97, "TAM invalid", _INT)
ERROR_TAM_REQUIRED = _error(98, "manifest unauthenticated", _INT)
ERROR_TAM_UNSUPPORTED_SUITE = _error(99, "unsupported suite", _INT)

# Not produced by borg: failures around the process itself (spawn, output decoding).
ERROR_RUNTIME = _error(-1, "command failed to run", ErrorCategory.RUNTIME)
ERROR_INVALID_OUTPUT = _error(-2, "unexpected command output", ErrorCategory.RUNTIME)

# -------- warnings --------

WARNING_GENERIC = BorgWarning(1, "warning", _G)
WARNING_FILE_CHANGED = BorgWarning(100, "file changed during backup", ErrorCategory.BACKUP)
WARNING_INCLUDE_PATTERN_NEVER_MATCHED = BorgWarning(101, "include pattern never matched", ErrorCategory.BACKUP)
WARNING_BACKUP_ERROR = BorgWarning(102, "backup error", ErrorCategory.BACKUP)
WARNING_BACKUP_RACE_CONDITION = BorgWarning(103, "file type or inode changed during backup", ErrorCategory.BACKUP)
WARNING_BACKUP_OS = BorgWarning(104, "backup OS error", ErrorCategory.BACKUP)
WARNING_BACKUP_PERMISSION = BorgWarning(105, "backup permission error", ErrorCategory.BACKUP)
WARNING_BACKUP_IO = BorgWarning(106, "backup IO error", ErrorCategory.BACKUP)
WARNING_BACKUP_FILE_NOT_FOUND = BorgWarning(107, "backup file not found", ErrorCategory.BACKUP)

ALL_ERRORS: tuple[BorgError, ...] = tuple(
    value for name, value in list(globals().items()) if name.startswith("ERROR_") and value.exit_code > 0
)
ALL_WARNINGS: tuple[BorgWarning, ...] = tuple(
    value for name, value in list(globals().items()) if name.startswith("WARNING_")
)

_ERRORS_BY_CODE: dict[int, BorgError] = {e.exit_code: e for e in ALL_ERRORS}
_WARNINGS_BY_CODE: dict[int, BorgWarning] = {w.exit_code: w for w in ALL_WARNINGS}


def classify(exit_code: int) -> tuple[BorgError | None, BorgWarning | None]:
    """Map a borg exit code to at most one error or warning.

    Args:
        exit_code: Process exit code (negative values mean "killed by signal")

    Returns:
        ``(None, None)`` for 0, ``(None, warning)`` for warning codes, otherwise
        ``(error, None)``. Codes outside the catalog map to the generic error,
        carrying the real exit code.
    """
    if exit_code == 0:
        return None, None
    if warning := _WARNINGS_BY_CODE.get(exit_code):
        return None, warning
    if error := _ERRORS_BY_CODE.get(exit_code):
        return error, None
    return ERROR_DEFAULT.with_exit_code(exit_code), None


@dataclass(frozen=True)
class Status:
    """Outcome of one borg invocation.

    At most one error and one warning; ``cancelled`` marks a caller-initiated
    stop and is never reported as an error.
    """

    error: BorgError | None = None
    warning: BorgWarning | None = None
    cancelled: bool = False

    @classmethod
    def ok(cls) -> Status:
        return cls()

    @classmethod
    def from_exit_code(cls, exit_code: int, cause: BaseException | None = None) -> Status:
        error, warning = classify(exit_code)
        if error is not None and cause is not None:
            error = error.with_cause(cause)
        return cls(error=error, warning=warning)

    @classmethod
    def with_error(cls, error: BorgError) -> Status:
        return cls(error=error)

    @classmethod
    def from_exception(cls, exc: BaseException, base: BorgError = ERROR_RUNTIME) -> Status:
        """Wrap a non-borg failure (spawn error, decode error) as a runtime error."""
        return cls(error=base.with_cause(exc))

    @classmethod
    def cancelled_status(cls) -> Status:
        return cls(cancelled=True)

    def is_completed_with_success(self) -> bool:
        """True when there is no error and the operation was not cancelled.

        A warning alone still counts as success.
        """
        return self.error is None and not self.cancelled

    def has_error(self) -> bool:
        return self.error is not None

    def has_warning(self) -> bool:
        return self.warning is not None

    @property
    def error_message(self) -> str:
        return self.error.message if self.error is not None else ""

    @property
    def warning_message(self) -> str:
        return self.warning.message if self.warning is not None else ""

    def raise_for_error(self) -> None:
        """Raise the contained error, or OperationCancelledError when cancelled."""
        if self.error is not None:
            # catalog entries are shared; raise a private copy
            raise self.error.with_cause(self.error.underlying)
        if self.cancelled:
            raise OperationCancelledError()
