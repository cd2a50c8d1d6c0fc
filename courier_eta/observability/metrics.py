from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, Optional, Tuple

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _labels_tuple(labels: Optional[Dict[str, str]]) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return ()
    return tuple(sorted(labels.items()))


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    min_value: float = field(default=float("inf"))
    max_value: float = field(default=float("-inf"))

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = min(self.min_value, value)
        self.max_value = max(self.max_value, value)

    def snapshot(self) -> Dict[str, Any]:
        avg = self.total / self.count if self.count else 0.0
        return {
            "count": self.count,
            "avg": avg,
            "min": None if self.count == 0 else self.min_value,
            "max": None if self.count == 0 else self.max_value,
        }


class MetricsRegistry:
    """
    In-process counters, gauges, latency histograms and a bounded event log.

    Owned by the application's composition root and handed to the services
    that report into it; tests construct their own.
    """

    def __init__(self, max_events: int = 100) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[MetricKey, float] = defaultdict(float)
        self._gauges: Dict[MetricKey, float] = {}
        self._histograms: Dict[MetricKey, Histogram] = {}
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    def increment_counter(self, name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._counters[(name, _labels_tuple(labels))] += amount

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._gauges[(name, _labels_tuple(labels))] = value

    def observe_latency(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            key = (name, _labels_tuple(labels))
            histogram = self._histograms.setdefault(key, Histogram())
            histogram.observe(value)

    @contextmanager
    def time_block(self, name: str, labels: Optional[Dict[str, str]] = None) -> Iterator[None]:
        """Observe the wall time of the block in milliseconds, even when it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe_latency(name, (time.perf_counter() - started) * 1000, labels=labels)

    def record_event(self, name: str, payload: Dict[str, Any]) -> None:
        event = {"name": name, "timestamp": time.time(), "payload": payload}
        with self._lock:
            self._events.append(event)

    def counter_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get((name, _labels_tuple(labels)), 0.0)

    def snapshot(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {"counters": {}, "gauges": {}, "histograms": {}}
        with self._lock:
            snapshot["events"] = list(self._events)
            for (name, labels), value in self._counters.items():
                snapshot["counters"].setdefault(name, []).append({"labels": dict(labels), "value": value})

            for (name, labels), value in self._gauges.items():
                snapshot["gauges"].setdefault(name, []).append({"labels": dict(labels), "value": value})

            for (name, labels), histogram in self._histograms.items():
                snapshot["histograms"].setdefault(name, []).append(
                    {"labels": dict(labels), "stats": histogram.snapshot()}
                )

        return snapshot

    def reset(self) -> None:
        """Testing helper."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._events.clear()
