"""Structured JSON logger for workers."""

import json
import sys
from datetime import UTC, datetime
from typing import Any

from .errors import get_current_correlation_id

LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}


class Logger:
    """Structured JSON logger.

    Every entry carries the bound context and, while a worker run is in
    progress, the run's correlation ID under ``tid``.
    """

    def __init__(self, context: dict[str, Any] | None = None, level: str = "debug") -> None:
        """Initialize logger with optional context and minimum level."""
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")
        self.context = context or {}
        self.level = level

    def child(self, context: dict[str, Any]) -> "Logger":
        """Create child logger with additional context."""
        return Logger({**self.context, **context}, level=self.level)

    def _log(self, level: str, message: str, extra: dict[str, Any] | None = None) -> None:
        """Log structured message."""
        if LEVELS[level] < LEVELS[self.level]:
            return
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "message": message,
            **self.context,
            **(extra or {}),
        }
        tid = get_current_correlation_id()
        if tid:
            entry.setdefault("tid", tid)
        # job payloads and error data are arbitrary; fall back to repr
        print(json.dumps(entry, default=repr), file=sys.stdout, flush=True)

    def debug(self, message: str, extra: dict[str, Any] | None = None) -> None:
        """Log debug message."""
        self._log("debug", message, extra)

    def info(self, message: str, extra: dict[str, Any] | None = None) -> None:
        """Log info message."""
        self._log("info", message, extra)

    def warn(self, message: str, extra: dict[str, Any] | None = None) -> None:
        """Log warning message."""
        self._log("warn", message, extra)

    def error(self, message: str, extra: dict[str, Any] | None = None) -> None:
        """Log error message."""
        self._log("error", message, extra)


logger = Logger({"module": "ponos"})
