"""Meter registry protocol and in-memory implementation."""

from __future__ import annotations

import threading
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MeterRegistry(Protocol):
    """Protocol for recording pipeline metrics.

    All methods must be safe to call from multiple threads: every in-flight
    execution reports from its own worker.
    """

    def counter(self, name: str, value: float = 1.0, tags: dict[str, str] | None = None) -> None:
        """Increment a counter metric."""
        ...

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        """Set a gauge metric to an absolute value."""
        ...

    def timer(self, name: str, duration_ms: float, tags: dict[str, str] | None = None) -> None:
        """Record a timing measurement in milliseconds."""
        ...

    def get_metrics(self) -> dict[str, Any]:
        """Return a snapshot of all recorded metrics."""
        ...


def _tag_key(tags: dict[str, str] | None) -> str:
    if not tags:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(tags.items()))


class InMemoryRegistry:
    """Thread-safe in-memory metrics registry.

    The default registry when no external backend is wired in; timers keep
    a running total and a sample count per tag set.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, dict[str, float]] = {}
        self._gauges: dict[str, dict[str, float]] = {}
        self._timers: dict[str, dict[str, list[float]]] = {}

    def counter(self, name: str, value: float = 1.0, tags: dict[str, str] | None = None) -> None:
        key = _tag_key(tags)
        with self._lock:
            bucket = self._counters.setdefault(name, {})
            bucket[key] = bucket.get(key, 0.0) + value

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        key = _tag_key(tags)
        with self._lock:
            self._gauges.setdefault(name, {})[key] = value

    def timer(self, name: str, duration_ms: float, tags: dict[str, str] | None = None) -> None:
        key = _tag_key(tags)
        with self._lock:
            entry = self._timers.setdefault(name, {}).setdefault(key, [0.0, 0.0])
            entry[0] += duration_ms
            entry[1] += 1

    def get_metrics(self) -> dict[str, Any]:
        """Return ``{"counters": ..., "gauges": ..., "timers": ...}``."""
        with self._lock:
            return {
                "counters": {name: dict(buckets) for name, buckets in self._counters.items()},
                "gauges": {name: dict(buckets) for name, buckets in self._gauges.items()},
                "timers": {
                    name: {key: {"total_ms": total, "count": int(count)} for key, (total, count) in buckets.items()}
                    for name, buckets in self._timers.items()
                },
            }

    def get_counter(self, name: str, tags: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._counters.get(name, {}).get(_tag_key(tags), 0.0)

    def get_gauge(self, name: str, tags: dict[str, str] | None = None) -> float | None:
        with self._lock:
            return self._gauges.get(name, {}).get(_tag_key(tags))

    def get_timer_count(self, name: str, tags: dict[str, str] | None = None) -> int:
        with self._lock:
            entry = self._timers.get(name, {}).get(_tag_key(tags))
            return int(entry[1]) if entry else 0
