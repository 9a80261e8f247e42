"""
Metrics Collector: Prometheus-Compatible Observability

Provides labelled counters, gauges and latency histograms, plus the
fixed metric set every storage instance reports through.

Minimal observer overhead: one dict update under a lock per event.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence


@dataclass(frozen=True)
class MetricLabels:
    """Immutable label set for metric dimensions."""
    labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str]) -> MetricLabels:
        return cls(labels=tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.labels)


class _LabelledMetric:
    __slots__ = ("_name", "_help", "_label_names", "_lock")

    def __init__(self, name: str, label_names: Sequence[str], help_text: str) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        filtered = {k: labels.get(k, "") for k in self._label_names}
        return MetricLabels.from_dict(filtered)

    @property
    def name(self) -> str:
        return self._name

    @property
    def help_text(self) -> str:
        return self._help


class Counter(_LabelledMetric):
    """
    Monotonically increasing counter metric.

    Usage:
        compressions = Counter("compressions_total", ["storage"])
        compressions.inc(storage="shard-0")
    """

    __slots__ = ("_values",)

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = defaultdict(float)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        """Increment counter."""
        if value < 0:
            raise ValueError("Counter can only increase")
        key = self._make_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (key.to_dict(), value)


class Gauge(_LabelledMetric):
    """
    Gauge metric that can go up and down.

    Usage:
        revision = Gauge("storage_revision", ["storage"])
        revision.set(42, storage="shard-0")
    """

    __slots__ = ("_values",)

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = {}

    def set(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = value

    def inc(self, value: float = 1.0, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (key.to_dict(), value)


class Histogram(_LabelledMetric):
    """
    Histogram with configurable buckets.

    Usage:
        latency = Histogram("compression_seconds", ["storage"])
        with latency.time(storage="shard-0"):
            compress()
    """

    __slots__ = ("_buckets", "_bucket_counts", "_sums", "_counts")

    DEFAULT_BUCKETS = (
        0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, float("inf"),
    )

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        # Ensure +Inf bucket
        if self._buckets[-1] != float("inf"):
            self._buckets = self._buckets + (float("inf"),)
        self._bucket_counts: dict[MetricLabels, list[int]] = {}
        self._sums: dict[MetricLabels, float] = defaultdict(float)
        self._counts: dict[MetricLabels, int] = defaultdict(int)

    def observe(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            counts = self._bucket_counts.setdefault(key, [0] * len(self._buckets))
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] += value
            self._counts[key] += 1

    def count(self, **labels: str) -> int:
        key = self._make_key(labels)
        with self._lock:
            return self._counts.get(key, 0)

    def time(self, **labels: str) -> HistogramTimer:
        """Context manager for timing operations."""
        return HistogramTimer(self, labels)

    def collect(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            snapshot = [
                (key, list(counts), self._sums.get(key, 0.0), self._counts.get(key, 0))
                for key, counts in self._bucket_counts.items()
            ]
        for key, counts, total, count in snapshot:
            yield {
                "labels": key.to_dict(),
                "buckets": list(zip(self._buckets, counts)),
                "sum": total,
                "count": count,
            }


class HistogramTimer:
    """Context manager for histogram timing."""

    __slots__ = ("_histogram", "_labels", "_start")

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0

    def __enter__(self) -> HistogramTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self._histogram.observe(time.perf_counter() - self._start, **self._labels)


class MetricsCollector:
    """
    Central registry for all metrics.

    Usage:
        collector = MetricsCollector()
        adds = collector.counter("points_added_total", ["storage"])
        output = collector.export_prometheus()
    """

    __slots__ = ("_counters", "_gauges", "_histograms", "_lock")

    _instance: Optional[MetricsCollector] = None

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MetricsCollector:
        """Get process-wide singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        """Get or create counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names, help_text)
            return self._counters[name]

    def gauge(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Gauge:
        """Get or create gauge."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name, label_names, help_text)
            return self._gauges[name]

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        """Get or create histogram."""
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name, label_names, help_text, buckets)
            return self._histograms[name]

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines: list[str] = []

        for name, counter in self._counters.items():
            lines.append(f"# TYPE {name} counter")
            for labels, value in counter.collect():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        for name, gauge in self._gauges.items():
            lines.append(f"# TYPE {name} gauge")
            for labels, value in gauge.collect():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        for name, histogram in self._histograms.items():
            lines.append(f"# TYPE {name} histogram")
            for data in histogram.collect():
                label_str = self._format_labels(data["labels"])
                inner = label_str[1:-1]
                for bound, count in data["buckets"]:
                    bound_str = "+Inf" if bound == float("inf") else str(bound)
                    sep = "," if inner else ""
                    lines.append(f'{name}_bucket{{le="{bound_str}"{sep}{inner}}} {count}')
                lines.append(f'{name}_sum{label_str} {data["sum"]}')
                lines.append(f'{name}_count{label_str} {data["count"]}')

        return "\n".join(lines)

    @staticmethod
    def _format_labels(labels: dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"


# =============================================================================
# STORAGE METRIC SET
# =============================================================================
class StorageMetrics:
    """
    The metrics one storage instance reports, labelled by storage name.

    Usage:
        metrics = StorageMetrics("shard-0")
        metrics.points_added()
        metrics.revision(17)
    """

    __slots__ = (
        "_labels", "_added", "_compressions", "_purged", "_evicted",
        "_applied", "_rejected", "_revision", "_compress_time",
    )

    def __init__(self, storage_name: str, collector: Optional[MetricsCollector] = None) -> None:
        c = collector or MetricsCollector.get_instance()
        self._labels = {"storage": storage_name}
        label_names = ("storage",)
        self._added = c.counter("points_added_total", label_names, "Points accepted by add")
        self._compressions = c.counter("compressions_total", label_names, "Raw buckets compressed")
        self._purged = c.counter("buckets_purged_total", label_names, "Buckets purged by forgetting")
        self._evicted = c.counter("buckets_evicted_total", label_names, "Buckets or points evicted")
        self._applied = c.counter("diffs_applied_total", label_names, "Diffs applied by put_diff")
        self._rejected = c.counter("diffs_rejected_total", label_names, "Stale diffs rejected")
        self._revision = c.gauge("storage_revision", label_names, "Current storage revision")
        self._compress_time = c.histogram("compression_seconds", label_names, "Compression latency")

    def points_added(self, n: int = 1) -> None:
        self._added.inc(n, **self._labels)

    def compressed(self) -> None:
        self._compressions.inc(**self._labels)

    def purged(self, n: int = 1) -> None:
        if n:
            self._purged.inc(n, **self._labels)

    def evicted(self, n: int = 1) -> None:
        if n:
            self._evicted.inc(n, **self._labels)

    def diff_applied(self) -> None:
        self._applied.inc(**self._labels)

    def diff_rejected(self) -> None:
        self._rejected.inc(**self._labels)

    def revision(self, value: int) -> None:
        self._revision.set(value, **self._labels)

    def time_compression(self) -> HistogramTimer:
        return self._compress_time.time(**self._labels)
