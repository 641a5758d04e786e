"""Tests for the default error reporter."""

import json

import pytest

from ponos.error_cat import ErrorCat, ErrorReporter, error_cat
from ponos.errors import WorkerStopError
from ponos.logger import Logger


def test_satisfies_protocol() -> None:
    assert isinstance(error_cat, ErrorReporter)


@pytest.mark.asyncio
async def test_report_logs_error_with_data(capsys: pytest.CaptureFixture[str]) -> None:
    reporter = ErrorCat(Logger({"module": "ponos:test"}))
    err = WorkerStopError("Invalid job", data={"queue": "a.b", "job": {"id": 1}})

    await reporter.report(err)

    [entry] = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert entry["level"] == "error"
    assert entry["message"] == "Invalid job"
    assert entry["component"] == "error-cat"
    assert entry["type"] == "WorkerStopError"
    assert entry["data"] == {"queue": "a.b", "job": {"id": 1}}
    assert entry["cause"] is None


@pytest.mark.asyncio
async def test_report_plain_exception(capsys: pytest.CaptureFixture[str]) -> None:
    try:
        try:
            raise KeyError("id")
        except KeyError as e:
            raise RuntimeError() from e
    except RuntimeError as err:
        await error_cat.report(err)

    [entry] = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert entry["message"] == "RuntimeError"
    assert entry["data"] == {}
    assert "KeyError" in entry["cause"]
