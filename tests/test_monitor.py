"""Tests for the Prometheus metrics client."""

from prometheus_client import CollectorRegistry

from ponos.monitor import Monitor, PrometheusMonitor, Timer, metric_name

TAGS = {
    "queue": "do.something.command",
    "token0": "command",
    "token1": "something.command",
    "token2": "do.something.command",
}


def _labels(**extra: str) -> dict[str, str]:
    return {"result": "", **TAGS, **extra}


def test_satisfies_protocols() -> None:
    monitor = PrometheusMonitor(registry=CollectorRegistry())

    assert isinstance(monitor, Monitor)
    assert isinstance(monitor.timer("ponos.timer", True, TAGS), Timer)


def test_metric_name() -> None:
    assert metric_name("ponos.finish") == "ponos_finish"
    assert metric_name("ponos.finish-retry-fn-error") == "ponos_finish_retry_fn_error"


def test_increment() -> None:
    registry = CollectorRegistry()
    monitor = PrometheusMonitor(registry=registry)

    monitor.increment("ponos.finish", {**TAGS, "result": "success"})
    monitor.increment("ponos.finish", {**TAGS, "result": "success"})
    monitor.increment("ponos.finish", {**TAGS, "result": "task-error"})

    assert registry.get_sample_value("ponos_finish_total", _labels(result="success")) == 2.0
    assert registry.get_sample_value("ponos_finish_total", _labels(result="task-error")) == 1.0


def test_missing_tags_are_blank() -> None:
    registry = CollectorRegistry()
    monitor = PrometheusMonitor(registry=registry)

    monitor.increment("ponos.finish", {"queue": "flat", "token0": "flat"})

    labels = {"queue": "flat", "token0": "flat", "token1": "", "token2": "", "result": ""}
    assert registry.get_sample_value("ponos_finish_total", labels) == 1.0


def test_separate_events_get_separate_counters() -> None:
    registry = CollectorRegistry()
    monitor = PrometheusMonitor(registry=registry)

    monitor.increment("ponos.finish", TAGS)
    monitor.increment("ponos.finish-error", {**TAGS, "result": "fatal-error"})

    assert registry.get_sample_value("ponos_finish_total", _labels()) == 1.0
    assert (
        registry.get_sample_value("ponos_finish_error_total", _labels(result="fatal-error"))
        == 1.0
    )


def test_timer_observes_once() -> None:
    registry = CollectorRegistry()
    monitor = PrometheusMonitor(registry=registry)

    timer = monitor.timer("ponos.timer", True, TAGS)
    timer.stop()
    timer.stop()

    assert registry.get_sample_value("ponos_timer_seconds_count", _labels()) == 1.0


def test_disabled_timer_observes_nothing() -> None:
    registry = CollectorRegistry()
    monitor = PrometheusMonitor(registry=registry)

    monitor.timer("ponos.timer", False, TAGS).stop()

    assert registry.get_sample_value("ponos_timer_seconds_count", _labels()) is None
