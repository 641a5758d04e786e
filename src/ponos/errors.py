"""Error taxonomy and correlation ID tracking."""

import uuid
from contextvars import ContextVar
from enum import Enum
from typing import Any

# Context variable for correlation ID (async-safe)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new correlation ID for run tracing."""
    return str(uuid.uuid4())


def get_current_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID in context."""
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    _correlation_id.set(None)


class ErrorKind(str, Enum):
    """How the worker treats a failure."""

    CONFIGURATION = "configuration"
    STOP = "stop"
    TIMEOUT = "timeout"
    GENERIC = "generic"


class WorkerError(Exception):
    """Base exception for worker failures.

    Attributes:
        message: Human-readable error message
        data: Context attached to the error (queue, job, ...)
    """

    kind = ErrorKind.GENERIC

    def __init__(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Initialize worker error."""
        super().__init__(message)
        self.message = message
        self.data = data if data is not None else {}

    def __str__(self) -> str:
        """String representation of error."""
        return self.message


class WorkerStopError(WorkerError):
    """Job must not be retried (bad input, retries exhausted, explicit stop)."""

    kind = ErrorKind.STOP


class WorkerTimeoutError(WorkerError):
    """Task did not finish within the worker timeout (retryable)."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, ms_timeout: int, data: dict[str, Any] | None = None) -> None:
        """Initialize timeout error."""
        super().__init__(
            f"Task timed out after {ms_timeout}ms",
            data={"ms_timeout": ms_timeout, **(data or {})},
        )
        self.ms_timeout = ms_timeout


class WorkerConfigError(WorkerError):
    """Worker options failed validation. Raised at construction, never retried."""

    kind = ErrorKind.CONFIGURATION


def classify_error(err: BaseException) -> ErrorKind:
    """Return the kind of failure ``err`` represents."""
    if isinstance(err, WorkerError):
        return err.kind
    return ErrorKind.GENERIC
