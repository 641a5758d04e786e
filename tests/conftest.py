"""Shared fixtures."""

import os
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from ponos.config import load_settings
from ponos.errors import clear_correlation_id
from ponos.logger import Logger


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep WORKER_* variables from the outer shell out of the tests."""
    for key in list(os.environ):
        if key.upper().startswith("WORKER_"):
            monkeypatch.delenv(key, raising=False)
    load_settings.cache_clear()
    clear_correlation_id()
    yield
    load_settings.cache_clear()


@pytest.fixture
def opts() -> dict[str, Any]:
    """Valid worker options with mocked collaborators."""

    async def task(job: Any) -> Any:
        return job

    monitor = MagicMock()
    monitor.timer.return_value = MagicMock()
    return {
        "queue": "do.something.command",
        "task": task,
        "job": {"message": "hello world"},
        "log": Logger({"module": "ponos:test"}, level="error"),
        "done": AsyncMock(),
        "monitor": monitor,
        "error_cat": MagicMock(report=AsyncMock()),
    }
