"""
Simple Storage: Fixed-Size Window of Recent Points

Keeps the bucket_size most recent raw points in a single bucket and
never compresses. When full, the oldest point is evicted (recorded as
an EVICT event). Forgetting parameters are accepted but ignored.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import ClusteringError
from clustermesh.core.types import (
    ClusteringMethod,
    CompressorMethod,
    Ok,
    Result,
    WeightedPoint,
)
from clustermesh.observability.metrics import MetricsCollector, StorageMetrics
from clustermesh.storage.bucket import Bucket
from clustermesh.storage.protocols import StorageStats, UpdateHandler
from clustermesh.storage.serialization import (
    PackedState,
    check_compatible,
    pack_state,
    unpack_state,
)
from clustermesh.storage.sync import (
    CompressionEvent,
    Diff,
    EventKind,
    StateSnapshot,
    SyncLedger,
    mix,
)
from clustermesh.storage.validation import validate_point, validate_sequence

logger = logging.getLogger(__name__)


class SimpleStorage:
    """
    FIFO window storage.

    Usage:
        storage = SimpleStorage("recent", config=StorageConfig(bucket_size=100))
        storage.add([0.5, 1.5])

    Raises:
        InvalidParameter: config fails validation
    """

    __slots__ = (
        "_name", "_method", "_config", "_metrics", "_listeners",
        "_bucket", "_dimension", "_revision", "_ledger",
    )

    def __init__(
        self,
        name: str,
        method: ClusteringMethod = ClusteringMethod.KMEANS,
        config: Optional[StorageConfig] = None,
        collector: Optional[MetricsCollector] = None,
    ) -> None:
        config = config if config is not None else StorageConfig()
        validated = config.validate()
        if validated.is_err():
            raise validated.error

        self._name = name
        self._method = method
        self._config = config
        self._metrics = StorageMetrics(name, collector)
        self._listeners: list[UpdateHandler] = []
        self._reset()

    def _reset(self) -> None:
        self._bucket = Bucket()
        self._dimension: Optional[int] = None
        self._revision = 0
        self._ledger = SyncLedger()
        self._ledger.reset(0, self._snapshot())
        self._metrics.revision(0)

    @property
    def name(self) -> str:
        return self._name

    @property
    def method(self) -> ClusteringMethod:
        return self._method

    @property
    def compressor_method(self) -> CompressorMethod:
        return CompressorMethod.SIMPLE

    @property
    def config(self) -> StorageConfig:
        return self._config

    def add(self, point: Any) -> Result[int, ClusteringError]:
        """Append a point, evicting the oldest when the window is full."""
        checked = validate_point(point, self._dimension)
        if checked.is_err():
            return checked
        p = checked.unwrap()

        self._ingest(p)
        self._ledger.record_point(p)
        self._revision += 1
        self._metrics.points_added()
        self._metrics.revision(self._revision)
        return Ok(self._revision)

    def get_all(self) -> list[WeightedPoint]:
        return list(self._bucket.points)

    def get_revision(self) -> int:
        return self._revision

    def clear(self) -> None:
        self._reset()
        logger.debug(f"Storage '{self._name}' cleared")

    def on_update(self, handler: UpdateHandler) -> None:
        self._listeners.append(handler)

    def stats(self) -> StorageStats:
        return StorageStats(
            name=self._name,
            revision=self._revision,
            bucket_count=1 if self._bucket.size else 0,
            point_count=self._bucket.size,
            total_weight=self._bucket.total_weight,
            dimension=self._dimension,
            epoch=0,
            compressed_buckets=0,
        )

    def _ingest(self, point: WeightedPoint) -> None:
        if self._dimension is None:
            self._dimension = point.dimension
        self._bucket.add(point)
        if self._bucket.size > self._config.bucket_size:
            oldest = self._bucket.points.pop(0)
            self._metrics.evicted()
            self._emit(CompressionEvent(
                kind=EventKind.EVICT,
                epoch=0,
                source_digest=Bucket(points=[oldest]).digest(),
                source_size=1,
                source_weight=oldest.weight,
            ))

    def _emit(self, event: CompressionEvent) -> None:
        # Listeners see every eviction; the ledger keeps one running total.
        self._ledger.record_event(event, coalesce=True)
        for handler in self._listeners:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Update listener error in storage '{self._name}': {e}")

    def pack(self) -> bytes:
        return pack_state(PackedState(
            compressor_method=self.compressor_method,
            method=self._method,
            config=self._config,
            revision=self._revision,
            epoch=0,
            dimension=self._dimension,
            buckets=[self._bucket],
            rng_state=None,
            base_revision=self._ledger.base_revision,
            snapshot=self._ledger.snapshot,
            pending=self._ledger.pending,
            events=self._ledger.events,
        ))

    def unpack(self, data: bytes) -> Result[None, ClusteringError]:
        decoded = unpack_state(data).flat_map(lambda s: check_compatible(
            s, self.compressor_method, self._method, self._config))
        if decoded.is_err():
            logger.warning(f"Storage '{self._name}' rejected packed state: {decoded.error}")
            return decoded
        state = decoded.unwrap()

        self._bucket = _single_bucket(state.buckets)
        self._dimension = state.dimension
        self._revision = state.revision
        self._ledger = SyncLedger()
        self._ledger.restore(state.base_revision, state.snapshot, state.pending, state.events)
        self._metrics.revision(self._revision)
        return Ok(None)

    def get_diff(self) -> Diff:
        return self._ledger.diff()

    def mix(self, lhs: Diff, rhs: Diff) -> Diff:
        return mix(lhs, rhs)

    def put_diff(self, diff: Diff) -> bool:
        """Rewind to the last boundary and replay the diff's points."""
        if not self._ledger.accepts(diff):
            self._metrics.diff_rejected()
            logger.warning(
                f"Storage '{self._name}' rejected stale diff: base revision "
                f"{diff.base_revision}, expected {self._ledger.base_revision}"
            )
            return False

        carried = self._ledger.carried_over(diff)
        snapshot = self._ledger.snapshot
        checked = validate_sequence(list(diff.new_points) + carried, snapshot.dimension)
        if checked.is_err():
            self._metrics.diff_rejected()
            logger.warning(f"Storage '{self._name}' rejected diff: {checked.error}")
            return False

        self._restore(snapshot)
        for point in diff.new_points:
            self._ingest(point)

        base = diff.base_revision + len(diff.new_points) + 1
        self._revision = base
        self._ledger.reset(base, self._snapshot())

        for point in carried:
            self._ingest(point)
            self._ledger.record_point(point)
            self._revision += 1

        self._metrics.diff_applied()
        self._metrics.revision(self._revision)
        logger.info(
            f"Storage '{self._name}' applied diff: {len(diff.new_points)} points, "
            f"{len(carried)} carried, revision {self._revision}"
        )
        return True

    def _snapshot(self) -> StateSnapshot:
        return StateSnapshot(buckets=[self._bucket.copy()], dimension=self._dimension)

    def _restore(self, snapshot: StateSnapshot) -> None:
        self._bucket = _single_bucket(snapshot.buckets)
        self._dimension = snapshot.dimension

    def __repr__(self) -> str:
        return (
            f"SimpleStorage(name={self._name!r}, method={self._method.value}, "
            f"revision={self._revision}, points={self._bucket.size})"
        )


def _single_bucket(buckets: list[Bucket]) -> Bucket:
    return buckets[0].copy() if buckets else Bucket()
