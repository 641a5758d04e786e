"""Error reporting for failed jobs."""

from typing import Any, Protocol, runtime_checkable

from .logger import Logger, logger


@runtime_checkable
class ErrorReporter(Protocol):
    """Client the worker hands every failed attempt to."""

    def report(self, err: BaseException) -> Any: ...


class ErrorCat:
    """Default error reporter: writes the error and its context to the log."""

    def __init__(self, log: Logger | None = None) -> None:
        """Initialize reporter."""
        self.log = (log or logger).child({"component": "error-cat"})

    async def report(self, err: BaseException) -> None:
        """Report an error."""
        data = getattr(err, "data", None)
        self.log.error(
            str(err) or type(err).__name__,
            {
                "type": type(err).__name__,
                "data": data if isinstance(data, dict) else {},
                "cause": repr(err.__cause__) if err.__cause__ is not None else None,
            },
        )


error_cat = ErrorCat()
