"""
Ponos

Per-job execution for queue workers: timeouts, metrics, error reporting and
retries with exponential backoff.
"""

from .config import WorkerOptions, WorkerSettings
from .error_cat import ErrorCat, ErrorReporter
from .errors import (
    ErrorKind,
    WorkerConfigError,
    WorkerError,
    WorkerStopError,
    WorkerTimeoutError,
    classify_error,
)
from .logger import Logger
from .monitor import Monitor, PrometheusMonitor, Timer
from .worker import Worker

__all__ = [
    "ErrorCat",
    "ErrorKind",
    "ErrorReporter",
    "Logger",
    "Monitor",
    "PrometheusMonitor",
    "Timer",
    "Worker",
    "WorkerConfigError",
    "WorkerError",
    "WorkerOptions",
    "WorkerSettings",
    "WorkerStopError",
    "WorkerTimeoutError",
    "classify_error",
]
__version__ = "0.1.0"
