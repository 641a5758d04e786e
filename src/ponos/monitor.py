"""Metrics client interface and the default Prometheus implementation."""

import re
import threading
import time
from typing import Protocol, runtime_checkable

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

LABELS = ("queue", "token0", "token1", "token2", "result")
_NON_METRIC_CHARS = re.compile(r"[^a-zA-Z0-9_]")


@runtime_checkable
class Timer(Protocol):
    """Handle returned by a running timer."""

    def stop(self) -> None: ...


@runtime_checkable
class Monitor(Protocol):
    """Metrics client used by workers."""

    def increment(self, event_name: str, tags: dict[str, str]) -> None: ...

    def timer(self, event_name: str, enabled: bool, tags: dict[str, str]) -> Timer: ...


def metric_name(event_name: str) -> str:
    """Map an event name such as ``ponos.finish`` to ``ponos_finish``."""
    return _NON_METRIC_CHARS.sub("_", event_name)


class MonitorTimer:
    """Observes elapsed seconds into a histogram when stopped."""

    def __init__(self, histogram: Histogram, labels: dict[str, str], enabled: bool = True) -> None:
        self.histogram = histogram
        self.labels = labels
        self.enabled = enabled
        self.start = time.perf_counter()
        self.stopped = False

    def stop(self) -> None:
        """Record the duration. Only the first call counts."""
        if self.stopped:
            return
        self.stopped = True
        if self.enabled:
            self.histogram.labels(**self.labels).observe(time.perf_counter() - self.start)


class PrometheusMonitor:
    """Metrics client backed by prometheus_client.

    Counters and histograms are created lazily per event name with a fixed
    label set; tags outside that set are dropped and missing ones are ``""``.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _labels(tags: dict[str, str]) -> dict[str, str]:
        return {label: str(tags.get(label, "")) for label in LABELS}

    def _counter(self, event_name: str) -> Counter:
        with self._lock:
            counter = self._counters.get(event_name)
            if counter is None:
                counter = Counter(
                    metric_name(event_name),
                    f"Worker event {event_name}",
                    LABELS,
                    registry=self.registry,
                )
                self._counters[event_name] = counter
            return counter

    def _histogram(self, event_name: str) -> Histogram:
        with self._lock:
            histogram = self._histograms.get(event_name)
            if histogram is None:
                histogram = Histogram(
                    f"{metric_name(event_name)}_seconds",
                    f"Worker duration {event_name}",
                    LABELS,
                    registry=self.registry,
                )
                self._histograms[event_name] = histogram
            return histogram

    def increment(self, event_name: str, tags: dict[str, str]) -> None:
        """Increment the counter for ``event_name``."""
        self._counter(event_name).labels(**self._labels(tags)).inc()

    def timer(self, event_name: str, enabled: bool, tags: dict[str, str]) -> MonitorTimer:
        """Start a timer for ``event_name``."""
        return MonitorTimer(self._histogram(event_name), self._labels(tags), enabled=enabled)


# Process-wide client; exports through the global registry
monitor = PrometheusMonitor(registry=REGISTRY)
