# botrouter/infra/metrics.py
"""
In-process counters and latency histograms.

Keys are rendered Prometheus-style (``name{label=value,...}``, labels sorted)
so the admin stats payload reads the same as a scrape would.
"""
from __future__ import annotations
import time
from collections import deque
from threading import Lock
from typing import Deque, Dict, Optional

from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)

# Samples retained per histogram key
HISTOGRAM_WINDOW = 1000


def metric_key(name: str, labels: Optional[dict] = None) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return name + "{" + rendered + "}"


class Histogram:
    """Sliding window of the most recent observations."""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self._samples: Deque[float] = deque(maxlen=window)

    def observe(self, value: float) -> None:
        self._samples.append(value)

    def get_stats(self) -> dict:
        n = len(self._samples)
        if n == 0:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}
        ordered = sorted(self._samples)
        return {
            "count": n,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / n,
            "p95": ordered[min(n - 1, int(n * 0.95))],
        }


class MetricsCollector:
    """Thread-safe registry behind /admin/stats."""

    def __init__(self):
        self._lock = Lock()
        self._counts: Dict[str, int] = {}
        self._histograms: Dict[str, Histogram] = {}

    def inc_counter(self, name: str, amount: int = 1, labels: Optional[dict] = None) -> None:
        key = metric_key(name, labels)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + amount

    def observe_histogram(self, name: str, value: float, labels: Optional[dict] = None) -> None:
        key = metric_key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = Histogram()
            histogram.observe(value)

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counts),
                "histograms": {key: h.get_stats() for key, h in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._histograms.clear()
        logger.info("Metrics reset")


_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _collector


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _collector.inc_counter(name, amount, labels)


def observe_histogram(name: str, value: float, **labels) -> None:
    _collector.observe_histogram(name, value, labels)


class Timer:
    """Records the wall time of a ``with`` block, in seconds, on exit."""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.elapsed_ms = 0.0
        self._started = 0.0

    def __enter__(self) -> Timer:
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc_info) -> None:
        seconds = time.perf_counter() - self._started
        self.elapsed_ms = seconds * 1000
        observe_histogram(self.metric_name, seconds, **self.labels)


class AppMetrics:
    """Named metrics used across the pipeline"""

    @staticmethod
    def message_received() -> None:
        inc_counter("messages_received_total")

    @staticmethod
    def message_rejected(reason: str) -> None:
        inc_counter("messages_rejected_total", reason=reason)

    @staticmethod
    def message_dispatched(category: str, handler: str) -> None:
        inc_counter("messages_dispatched_total", category=category, handler=handler)

    @staticmethod
    def handler_failure(handler: str) -> None:
        inc_counter("handler_failures_total", handler=handler)

    @staticmethod
    def command_executed(command: str, success: bool) -> None:
        inc_counter("commands_executed_total", command=command, success=str(success).lower())

    @staticmethod
    def command_denied(command: str, check: str) -> None:
        inc_counter("commands_denied_total", command=command, check=check)

    @staticmethod
    def snapshot_failure() -> None:
        inc_counter("watermark_snapshot_failures_total")

    @staticmethod
    def contexts_expired(count: int) -> None:
        if count:
            inc_counter("contexts_expired_total", count)

    @staticmethod
    def database_error(operation: str) -> None:
        inc_counter("database_errors_total", operation=operation)

    @staticmethod
    def gateway_send_failed() -> None:
        inc_counter("gateway_send_failures_total")

    @staticmethod
    def track_dispatch_time(category: str) -> Timer:
        return Timer("dispatch_seconds", category=category)
