# helpcast/infra/metrics.py
"""
In-process metrics: counters, gauges and windowed histograms.

Series are keyed by name plus sorted labels, e.g.
``helpers_notified_total{mode=fallback}``.  Histograms keep only the most
recent ``HISTOGRAM_WINDOW`` observations, so percentiles describe recent
traffic and memory stays flat in a long-running process.
"""
from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Deque, Dict, Sequence

from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)

HISTOGRAM_WINDOW = 2048

_EMPTY_STATS = {"count": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0, "p99": 0}


def _series_key(name: str, labels: dict | None) -> str:
    if not labels:
        return name
    label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{label_str}}}"


def _summarize(values: Sequence[float]) -> dict:
    if not values:
        return dict(_EMPTY_STATS)

    ordered = sorted(values)
    count = len(ordered)

    def pct(p: float) -> float:
        return ordered[min(int(count * p), count - 1)]

    return {
        "count": count,
        "min": ordered[0],
        "max": ordered[-1],
        "avg": sum(ordered) / count,
        "p50": pct(0.50),
        "p95": pct(0.95),
        "p99": pct(0.99),
    }


class MetricsCollector:
    """Thread-safe store behind the module-level helpers."""

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self._window = histogram_window
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Deque[float]] = {}
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = _series_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def set_gauge(self, name: str, value: float, labels: dict | None = None) -> None:
        key = _series_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = _series_key(name, labels)
        with self._lock:
            window = self._histograms.get(key)
            if window is None:
                window = self._histograms[key] = deque(maxlen=self._window)
            window.append(value)

    def get_counter(self, name: str, **labels) -> int:
        with self._lock:
            return self._counters.get(_series_key(name, labels or None), 0)

    def get_metrics(self) -> dict:
        """Snapshot of every series."""
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            windows = {k: list(v) for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": {k: _summarize(v) for k, v in windows.items()},
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
        logger.debug("Metrics reset")


# Global metrics collector
_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def set_gauge(name: str, value: float, **labels) -> None:
    _metrics.set_gauge(name, value, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager recording elapsed seconds into a histogram."""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self._started: float | None = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started is not None:
            observe_histogram(self.metric_name, time.perf_counter() - self._started, **self.labels)


class AppMetrics:
    """Broadcast-level metrics tracking"""

    @staticmethod
    def request_created(urgency: str) -> None:
        inc_counter("service_requests_created_total", urgency=urgency)

    @staticmethod
    def category_created() -> None:
        inc_counter("categories_created_total")

    @staticmethod
    def helpers_notified(count: int, mode: str) -> None:
        inc_counter("dispatch_passes_total", mode=mode)
        inc_counter("helpers_notified_total", amount=count, mode=mode)

    @staticmethod
    def dispatch_failed(stage: str) -> None:
        inc_counter("dispatch_failures_total", stage=stage)

    @staticmethod
    def push_trigger(status: str) -> None:
        inc_counter("push_triggers_total", status=status)

    @staticmethod
    def media_item(outcome: str) -> None:
        inc_counter("media_items_total", outcome=outcome)

    @staticmethod
    def dispatch_replayed() -> None:
        inc_counter("dispatch_replays_total")

    @staticmethod
    def database_error(operation: str) -> None:
        inc_counter("database_errors_total", operation=operation)

    @staticmethod
    def worker_queue(pending: int, running: bool) -> None:
        set_gauge("worker_queue_depth", pending)
        set_gauge("worker_pool_running", 1 if running else 0)

    @staticmethod
    def track_intake_time() -> Timer:
        return Timer("intake_processing_seconds")

    @staticmethod
    def track_dispatch_time(chain: str) -> Timer:
        return Timer("background_chain_seconds", chain=chain)
