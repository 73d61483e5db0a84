"""
Structured error types for knoa.

Every error raised by the coordination substrate is an ``ApplicationError``.
Instead of bare exceptions that lose context, each error carries:

- **Code:** Stable machine-readable identifier (``ERR_VALIDATION``, ``ERR_LOCK_TIMEOUT``)
- **Recoverable:** Whether a recovery strategy may legitimately be attempted
- **Context:** Free-form metadata (component, operation, trace/request IDs)
- **Cause:** Chained underlying exception for root cause analysis
- **Kind:** Coarse classification used for routing and exit codes

Manifesto:
    - **Typed Error Hierarchy:** Subtypes are distinguished by class name and default code
    - **Explicit Recovery Semantics:** Each error knows if recovery may be attempted
    - **Rich Context:** Errors carry metadata for logging and event payloads
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      ApplicationError                            │
        │        (code, recoverable, context, cause, timestamp)            │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ValidationError   StateError          DataConsistencyError      │
        │  (INPUT)           (STATE, fatal)      (INVARIANT, fatal)        │
        │                                                                  │
        │  StorageError      GitError            NotFoundError             │
        │  (IO)              (IO)                (ABSENT)                  │
        │                                                                  │
        │  TimeoutError      LockError           ConfigurationError        │
        │  └ LockTimeoutError (TIMING)           DependencyError (CONFIG)  │
        │                                                                  │
        │  EventError        CliError            ExternalServiceError      │
        │  (WRAPPER)         (WRAPPER, fatal)    NetworkError  AuthError   │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ValidationError("Invalid task data", errors=["id: bad format"])
    >>> error.code, error.recoverable
    ('ERR_VALIDATION', True)
    >>> str(error)
    'Invalid task data: id: bad format'

    >>> try:
    ...     raise OSError("disk full")
    ... except OSError as e:
    ...     wrapped = wrap_error(e, "Failed to write tasks", error_class=StorageError)
    >>> wrapped.cause
    OSError('disk full')

Guardrails:
    ❌ DON'T: Raise plain Exception from domain code
    ✅ DO: Raise the matching ApplicationError subclass with a code

    ❌ DON'T: Swallow the original exception when rewrapping
    ✅ DO: Pass it as cause= so ``__cause__`` is set

Tags:
    error-handling, exception-hierarchy, recovery, error-context, knoa

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Coarse error classification used for routing and CLI exit codes."""

    INPUT = "input"              # Validation
    STATE = "state"              # State
    INVARIANT = "invariant"      # DataConsistency
    ABSENT = "absent"            # NotFound
    IO = "io"                    # Storage, Git, Network
    TIMING = "timing"            # Timeout, Lock
    CONFIGURATION = "configuration"  # Configuration, Dependency
    SECURITY = "security"        # Authorization
    WRAPPER = "wrapper"          # Application, Event, Cli


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ApplicationError(Exception):
    """
    Base exception for all knoa errors.

    Subclasses set ``default_code``, ``default_recoverable`` and
    ``default_kind``; callers may override code and recoverability per
    instance.

    Attributes:
        message: Human readable message
        code: Machine readable error code
        recoverable: Whether a recovery strategy may be attempted
        context: Mutable metadata dictionary
        cause: Underlying exception, also stored as ``__cause__``
        timestamp: ISO-8601 creation time (UTC)
    """

    default_code: str = "ERR_APPLICATION"
    default_recoverable: bool = True
    default_kind: ErrorKind = ErrorKind.WRAPPER

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
        recoverable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.recoverable = (
            recoverable if recoverable is not None else self.default_recoverable
        )
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause
        self.timestamp = _utcnow_iso()

        if cause is not None:
            self.__cause__ = cause

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def kind(self) -> ErrorKind:
        return self.default_kind

    def with_context(self, **kwargs: Any) -> ApplicationError:
        """
        Merge metadata into this error (fluent API).

        Usage:
            raise StorageError("write failed").with_context(path="tasks.json")
        """
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
            "kind": self.kind.value,
            "context": dict(self.context),
            "timestamp": self.timestamp,
        }
        if self.cause is not None:
            result["cause"] = {
                "name": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result

    def describe(self) -> str:
        """One-line ``[code] Name: message`` summary."""
        return f"[{self.code}] {self.name}: {self.message}"

    def __repr__(self) -> str:
        return f"{self.name}({self.message!r}, code={self.code})"


# =============================================================================
# INPUT / STATE / INVARIANT
# =============================================================================


class ValidationError(ApplicationError):
    """
    Input validation error.

    The individual problems are kept in ``errors`` and appended to the
    message so that a single ``str(error)`` is enough for CLI output.
    """

    default_code = "ERR_VALIDATION"
    default_recoverable = True
    default_kind = ErrorKind.INPUT

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        **kwargs: Any,
    ):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {', '.join(self.errors)}"
        super().__init__(message, **kwargs)
        if self.errors:
            self.context.setdefault("errors", list(self.errors))


class StateError(ApplicationError):
    """Operation not permitted in the current state."""

    default_code = "ERR_STATE"
    default_recoverable = False
    default_kind = ErrorKind.STATE


class DataConsistencyError(ApplicationError):
    """Persisted data violates an invariant (duplicate IDs, broken links)."""

    default_code = "ERR_DATA_CONSISTENCY"
    default_recoverable = False
    default_kind = ErrorKind.INVARIANT


class NotFoundError(ApplicationError):
    """Requested entity does not exist."""

    default_code = "ERR_NOT_FOUND"
    default_recoverable = True
    default_kind = ErrorKind.ABSENT


# =============================================================================
# I/O
# =============================================================================


class StorageError(ApplicationError):
    """File system read/write failure."""

    default_code = "ERR_STORAGE"
    default_recoverable = True
    default_kind = ErrorKind.IO


class GitError(ApplicationError):
    """Git invocation failure."""

    default_code = "ERR_GIT"
    default_recoverable = True
    default_kind = ErrorKind.IO


class NetworkError(ApplicationError):
    """Network failure talking to a remote endpoint."""

    default_code = "ERR_NETWORK"
    default_recoverable = True
    default_kind = ErrorKind.IO


class ExternalServiceError(ApplicationError):
    """A collaborating external service reported a failure."""

    default_code = "ERR_EXTERNAL_SERVICE"
    default_recoverable = True
    default_kind = ErrorKind.IO


# =============================================================================
# TIMING
# =============================================================================


class TimeoutError(ApplicationError):  # noqa: A001
    """Operation did not complete in time."""

    default_code = "ERR_TIMEOUT"
    default_recoverable = True
    default_kind = ErrorKind.TIMING


class LockError(ApplicationError):
    """Lock ownership violation or acquisition failure."""

    default_code = "ERR_LOCK_TIMEOUT"
    default_recoverable = True
    default_kind = ErrorKind.TIMING


class LockTimeoutError(TimeoutError):
    """
    Lock could not be acquired before the deadline.

    The code is always ``ERR_LOCK_TIMEOUT`` and ``context.errorType`` is
    stamped so that consumers reading only the context can tell it apart
    from a generic timeout.
    """

    def __init__(self, message: str, **kwargs: Any):
        kwargs["code"] = "ERR_LOCK_TIMEOUT"
        super().__init__(message, **kwargs)
        self.context["errorType"] = "LockTimeoutError"


# =============================================================================
# CONFIGURATION / SECURITY
# =============================================================================


class ConfigurationError(ApplicationError):
    """Missing or invalid configuration. Never recoverable."""

    default_code = "ERR_CONFIG"
    default_recoverable = False
    default_kind = ErrorKind.CONFIGURATION


class DependencyError(ApplicationError):
    """Service wiring problem: missing service or circular dependency."""

    default_code = "ERR_DEPENDENCY"
    default_recoverable = True
    default_kind = ErrorKind.CONFIGURATION


class AuthorizationError(ApplicationError):
    """Caller is not allowed to perform the operation."""

    default_code = "ERR_AUTHORIZATION"
    default_recoverable = False
    default_kind = ErrorKind.SECURITY


# =============================================================================
# WRAPPERS
# =============================================================================


class EventError(ApplicationError):
    """Event emission or catalog failure."""

    default_code = "ERR_EVENT"
    default_recoverable = True


class CliError(ApplicationError):
    """
    Failure surfaced at the CLI/adapter boundary.

    Codes follow ``ERR_CLI_<CLASS>_<OP>`` when produced by an adapter.
    """

    default_code = "ERR_CLI"
    default_recoverable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


USER_FACING_ERRORS: tuple[type[ApplicationError], ...] = (
    ValidationError,
    NotFoundError,
    CliError,
)


def wrap_error(
    error: BaseException,
    message: str | None = None,
    *,
    error_class: type[ApplicationError] = ApplicationError,
    code: str | None = None,
    context: dict[str, Any] | None = None,
) -> ApplicationError:
    """Wrap an arbitrary exception in an ApplicationError subclass.

    ApplicationErrors are returned unchanged apart from merged context.
    """
    if isinstance(error, ApplicationError):
        if context:
            error.context.update(context)
        return error
    return error_class(
        message or str(error) or type(error).__name__,
        code=code,
        context=context,
        cause=error,
    )


def is_recoverable(error: BaseException) -> bool:
    """Check if recovery may be attempted for an error."""
    if isinstance(error, ApplicationError):
        return error.recoverable
    return False


def get_error_code(error: BaseException) -> str:
    """Get the error code, falling back to ``ERR_UNKNOWN``."""
    return getattr(error, "code", None) or "ERR_UNKNOWN"


def is_user_facing(error: BaseException) -> bool:
    """True for errors the CLI reports with a concise message and exit code 1."""
    return isinstance(error, USER_FACING_ERRORS)


__all__ = [
    "ErrorKind",
    "ApplicationError",
    "ValidationError",
    "StateError",
    "DataConsistencyError",
    "NotFoundError",
    "StorageError",
    "GitError",
    "NetworkError",
    "ExternalServiceError",
    "TimeoutError",
    "LockError",
    "LockTimeoutError",
    "ConfigurationError",
    "DependencyError",
    "AuthorizationError",
    "EventError",
    "CliError",
    "USER_FACING_ERRORS",
    "wrap_error",
    "is_recoverable",
    "get_error_code",
    "is_user_facing",
]
