"""
Per-queue metrics for operator visibility.

Prometheus-compatible without requiring the Prometheus library:
- Counters: scans, claims, contention/stale skips, outcomes, errors
- Gauge: tasks in flight
- Histogram: task duration (milliseconds)

Every DistributedWorkQueue owns one QueueMetrics, exposed through
``queue.metrics`` and ``queue.stats``:

    print(queue.metrics.prometheus_format())
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

# Histogram buckets for task duration (milliseconds)
DEFAULT_DURATION_BUCKETS = (
    10, 50, 100, 500, 1000, 5000, 10000, 30000, 60000, 300000
)


@dataclass
class CounterValue:
    """Thread-safe counter."""
    value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self.value += amount

    def get(self) -> float:
        with self._lock:
            return self.value


@dataclass
class GaugeValue:
    """Thread-safe gauge."""
    value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set(self, value: float) -> None:
        with self._lock:
            self.value = value

    def get(self) -> float:
        with self._lock:
            return self.value


class HistogramValue:
    """Thread-safe histogram with configurable buckets."""

    def __init__(self, buckets: Tuple[float, ...] = DEFAULT_DURATION_BUCKETS) -> None:
        self._buckets = tuple(sorted(buckets)) + (float('inf'),)
        self._counts = [0] * len(self._buckets)
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum += value
            self._count += 1
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    self._counts[i] += 1
                    break

    def get(self) -> Dict[str, Any]:
        with self._lock:
            bucket_data = []
            cumulative = 0
            for i, bound in enumerate(self._buckets):
                cumulative += self._counts[i]
                if bound != float('inf'):
                    bucket_data.append((bound, cumulative))
            return {
                "buckets": bucket_data,
                "sum": self._sum,
                "count": self._count,
            }


@dataclass
class QueueSnapshot:
    """Point-in-time copy of a queue's metrics."""
    timestamp: float
    scans: float
    claims: float
    contention_skips: float
    stale_skips: float
    processed: float
    failed: float
    cleanup_errors: float
    scan_errors: float
    in_flight: float
    task_duration_ms: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scans": self.scans,
            "claims": self.claims,
            "contention_skips": self.contention_skips,
            "stale_skips": self.stale_skips,
            "processed": self.processed,
            "failed": self.failed,
            "cleanup_errors": self.cleanup_errors,
            "scan_errors": self.scan_errors,
            "in_flight": self.in_flight,
        }


_COUNTERS = (
    ("scans", "Claim scans started"),
    ("claims", "Work items claimed and dispatched"),
    ("contention_skips", "Claim attempts lost to another worker"),
    ("stale_skips", "Claims released because the item was already gone"),
    ("processed", "Work items processed successfully"),
    ("failed", "Processing attempts that raised"),
    ("cleanup_errors", "Failed deletions of items or claim markers"),
    ("scan_errors", "Scans aborted by an unexpected error"),
)


class QueueMetrics:
    """
    Metrics for one DistributedWorkQueue.

    Thread-safe: counters are updated from scan threads, watch callbacks
    and pool workers concurrently.
    """

    def __init__(self, queue_path: str = "") -> None:
        self._queue_path = queue_path
        self._counters: Dict[str, CounterValue] = {
            name: CounterValue() for name, _ in _COUNTERS
        }
        self._in_flight = GaugeValue()
        self._duration = HistogramValue()

    def inc(self, name: str, amount: float = 1.0) -> None:
        self._counters[name].inc(amount)

    def set_in_flight(self, value: int) -> None:
        self._in_flight.set(value)

    def observe_task(self, duration_ms: float) -> None:
        self._duration.observe(duration_ms)

    def get(self, name: str) -> float:
        return self._counters[name].get()

    def snapshot(self) -> QueueSnapshot:
        values = {name: counter.get() for name, counter in self._counters.items()}
        return QueueSnapshot(
            timestamp=time.time(),
            in_flight=self._in_flight.get(),
            task_duration_ms=self._duration.get(),
            **values,
        )

    def prometheus_format(self) -> str:
        """Export metrics in Prometheus text exposition format."""
        lines = []
        snap = self.snapshot()
        label = f'{{queue="{self._queue_path}"}}'

        for name, help_text in _COUNTERS:
            lines.append(f"# HELP dwq_{name}_total {help_text}")
            lines.append(f"# TYPE dwq_{name}_total counter")
            lines.append(f"dwq_{name}_total{label} {getattr(snap, name)}")
            lines.append("")

        lines.append("# HELP dwq_in_flight Tasks handed to the pool and not finished")
        lines.append("# TYPE dwq_in_flight gauge")
        lines.append(f"dwq_in_flight{label} {snap.in_flight}")

        lines.append("")
        lines.append("# HELP dwq_task_duration_ms Task duration in milliseconds")
        lines.append("# TYPE dwq_task_duration_ms histogram")
        hist = snap.task_duration_ms
        for bound, count in hist.get("buckets", []):
            lines.append(
                f'dwq_task_duration_ms_bucket{{queue="{self._queue_path}",le="{bound}"}} {count}'
            )
        lines.append(
            f'dwq_task_duration_ms_bucket{{queue="{self._queue_path}",le="+Inf"}} {hist.get("count", 0)}'
        )
        lines.append(f'dwq_task_duration_ms_sum{label} {hist.get("sum", 0)}')
        lines.append(f'dwq_task_duration_ms_count{label} {hist.get("count", 0)}')

        lines.append("")
        return "\n".join(lines)
