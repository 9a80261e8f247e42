"""
Compressive Storage: Bucketed Coreset Summaries with Forgetting

Memory stays bounded no matter how many points stream through:

    add ──► [raw bucket] ──(bucket_size reached)──► compress ──► [summary]
                                                        │
                       decay + purge older summaries ◄──┘

    buckets:  [summary e0] [summary e1] ... [raw eN]   (oldest first)

Lifecycle of one epoch:
    1. Points append to the open raw bucket
    2. When it holds bucket_size points it is compressed in place to at
       most compressed_bucket_size weighted centroids and the epoch
       advances
    3. Every older bucket decays by forgetting_factor; buckets at or
       below forgetting_threshold are purged
    4. The next add opens a new raw bucket, first evicting the oldest
       buckets while bucket_length are retained

Every compression, purge and eviction is recorded in the sync ledger and
reported to update listeners.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Mapping, Optional

import numpy as np

from clustermesh.compression.compressor import compressor_for
from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import ClusteringError, CompressionError, StorageError
from clustermesh.core.types import (
    ClusteringMethod,
    CompressorMethod,
    Err,
    Ok,
    Result,
    WeightedPoint,
)
from clustermesh.observability.metrics import MetricsCollector, StorageMetrics
from clustermesh.storage.bucket import Bucket, ForgettingPolicy
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


class CompressiveStorage:
    """
    Storage that summarises full buckets with the coreset compressor.

    Usage:
        storage = CompressiveStorage("shard-0", ClusteringMethod.KMEANS,
                                     StorageConfig(bucket_size=500, seed=7))
        result = storage.add(WeightedPoint.from_values([1.0, 2.0]))
        if result.is_ok():
            revision = result.unwrap()

    Raises:
        InvalidParameter: config fails validation
    """

    __slots__ = (
        "_name", "_method", "_config", "_policy", "_compressor", "_metrics",
        "_listeners", "_buckets", "_epoch", "_dimension", "_revision",
        "_rng", "_ledger",
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
        self._policy = ForgettingPolicy(config.forgetting_factor, config.forgetting_threshold)
        self._compressor = compressor_for(method)
        self._metrics = StorageMetrics(name, collector)
        self._listeners: list[UpdateHandler] = []
        self._reset()

    def _reset(self) -> None:
        self._buckets: list[Bucket] = []
        self._epoch = 0
        self._dimension: Optional[int] = None
        self._revision = 0
        self._rng = np.random.default_rng(self._config.seed)
        self._ledger = SyncLedger()
        self._ledger.reset(0, self._snapshot())
        self._metrics.revision(0)

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def name(self) -> str:
        return self._name

    @property
    def method(self) -> ClusteringMethod:
        return self._method

    @property
    def compressor_method(self) -> CompressorMethod:
        return CompressorMethod.COMPRESSIVE

    @property
    def config(self) -> StorageConfig:
        return self._config

    # =========================================================================
    # ACCUMULATION
    # =========================================================================
    def add(self, point: Any) -> Result[int, ClusteringError]:
        """
        Insert one point, compressing the raw bucket if it fills up.

        Returns:
            Ok[int]: revision after the insert
            Err[ClusteringError]: DimensionMismatch, InvalidParameter or
                CompressionError; storage unchanged
        """
        checked = validate_point(point, self._dimension)
        if checked.is_err():
            return checked
        p = checked.unwrap()

        try:
            self._ingest(p, None)
        except CompressionError as e:
            logger.error(f"Storage '{self._name}' rejected point: {e}")
            return Err(e)
        self._ledger.record_point(p)
        self._revision += 1
        self._metrics.points_added()
        self._metrics.revision(self._revision)
        return Ok(self._revision)

    def get_all(self) -> list[WeightedPoint]:
        return [p for bucket in self._buckets for p in bucket.points]

    def get_revision(self) -> int:
        return self._revision

    def clear(self) -> None:
        """Drop every bucket and the sync ledger; reseed the RNG."""
        self._reset()
        logger.debug(f"Storage '{self._name}' cleared")

    def on_update(self, handler: UpdateHandler) -> None:
        self._listeners.append(handler)

    def stats(self) -> StorageStats:
        return StorageStats(
            name=self._name,
            revision=self._revision,
            bucket_count=len(self._buckets),
            point_count=sum(b.size for b in self._buckets),
            total_weight=sum(b.total_weight for b in self._buckets),
            dimension=self._dimension,
            epoch=self._epoch,
            compressed_buckets=sum(1 for b in self._buckets if b.compressed),
        )

    def _ingest(
        self,
        point: WeightedPoint,
        summaries: Optional[Mapping[str, tuple[WeightedPoint, ...]]],
    ) -> None:
        """
        Append one point, compressing the raw bucket if it becomes full.

        The summary is computed before any state changes, so a
        CompressionError leaves the storage exactly as it was.
        """
        raw = self._raw_bucket()
        staged = None
        if (raw.size if raw is not None else 0) + 1 >= self._config.bucket_size:
            source = Bucket(
                points=[*(raw.points if raw is not None else ()), point],
                created_epoch=raw.created_epoch if raw is not None else self._epoch,
            )
            staged = self._summarize(source, summaries)

        if self._dimension is None:
            self._dimension = point.dimension
        bucket = self._open_bucket()
        bucket.add(point)
        if staged is not None:
            self._commit(bucket, *staged)

    def _raw_bucket(self) -> Optional[Bucket]:
        if self._buckets and not self._buckets[-1].compressed:
            return self._buckets[-1]
        return None

    def _open_bucket(self) -> Bucket:
        """The raw bucket accepting points, started (after eviction) if needed."""
        raw = self._raw_bucket()
        if raw is not None:
            return raw

        while len(self._buckets) >= self._config.bucket_length:
            evicted = self._buckets.pop(0)
            self._metrics.evicted()
            logger.debug(
                f"Storage '{self._name}' evicted bucket of epoch {evicted.created_epoch} "
                f"({evicted.size} points)"
            )
            self._emit(_bucket_event(EventKind.EVICT, evicted))

        bucket = Bucket(created_epoch=self._epoch)
        self._buckets.append(bucket)
        return bucket

    def _summarize(
        self,
        source: Bucket,
        summaries: Optional[Mapping[str, tuple[WeightedPoint, ...]]],
    ) -> tuple[str, list[WeightedPoint], bool]:
        """
        Summary for a full raw bucket: adopted from a diff or freshly computed.

        Returns:
            (source digest, summary points, adopted)

        Raises:
            CompressionError: the compressor failed; the RNG is rewound
        """
        digest = source.digest()
        adopted = summaries.get(digest) if summaries else None
        if adopted is not None:
            return digest, list(adopted), True

        rng_state = self._rng.bit_generator.state
        try:
            with self._metrics.time_compression():
                summary = self._compressor.compress(
                    source.points,
                    target_size=self._config.compressed_bucket_size,
                    base_size=self._config.bicriteria_base_size,
                    rng=self._rng,
                )
        except (ValueError, ArithmeticError) as e:
            self._rng.bit_generator.state = rng_state
            raise CompressionError.failed(source.created_epoch, source.size, str(e)) from e
        return digest, summary, False

    def _commit(
        self,
        bucket: Bucket,
        digest: str,
        summary: list[WeightedPoint],
        adopted: bool,
    ) -> None:
        source_size = bucket.size
        source_weight = bucket.total_weight
        bucket.replace_with_summary(summary)
        self._metrics.compressed()
        logger.debug(
            f"Storage '{self._name}' compressed epoch {bucket.created_epoch}: "
            f"{source_size} -> {len(summary)} points"
            + (" (adopted)" if adopted else "")
        )
        self._emit(CompressionEvent(
            kind=EventKind.COMPRESS,
            epoch=bucket.created_epoch,
            source_digest=digest,
            source_size=source_size,
            source_weight=source_weight,
            produced=tuple(summary),
        ))

        self._epoch += 1
        kept, purged = self._policy.apply(self._buckets, current=bucket)
        self._buckets = kept
        self._metrics.purged(len(purged))
        for gone in purged:
            logger.debug(
                f"Storage '{self._name}' purged bucket of epoch {gone.created_epoch} "
                f"(weight {gone.total_weight:.6g})"
            )
            self._emit(_bucket_event(EventKind.PURGE, gone))

    def _emit(self, event: CompressionEvent) -> None:
        self._ledger.record_event(event)
        for handler in self._listeners:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Update listener error in storage '{self._name}': {e}")

    # =========================================================================
    # PERSISTENCE
    # =========================================================================
    def pack(self) -> bytes:
        return pack_state(PackedState(
            compressor_method=self.compressor_method,
            method=self._method,
            config=self._config,
            revision=self._revision,
            epoch=self._epoch,
            dimension=self._dimension,
            buckets=self._buckets,
            rng_state=self._rng.bit_generator.state,
            base_revision=self._ledger.base_revision,
            snapshot=self._ledger.snapshot,
            pending=self._ledger.pending,
            events=self._ledger.events,
        ))

    def unpack(self, data: bytes) -> Result[None, ClusteringError]:
        """
        Replace all state with a packed payload.

        Returns:
            Ok(None)
            Err[StorageError]: corrupted or incompatible payload; storage
                unchanged
        """
        decoded = unpack_state(data).flat_map(lambda s: check_compatible(
            s, self.compressor_method, self._method, self._config))
        if decoded.is_err():
            logger.warning(f"Storage '{self._name}' rejected packed state: {decoded.error}")
            return decoded
        state = decoded.unwrap()

        rng = np.random.default_rng()
        try:
            rng.bit_generator.state = state.rng_state
            # Boundary state is only used on put_diff; reject it now, not then.
            np.random.default_rng().bit_generator.state = state.snapshot.rng_state
        except (TypeError, ValueError, KeyError) as e:
            return Err(StorageError.corrupted(f"RNG state: {e}"))

        self._config = dataclasses.replace(self._config, seed=state.config.seed)
        self._buckets = state.buckets
        self._epoch = state.epoch
        self._dimension = state.dimension
        self._revision = state.revision
        self._rng = rng
        self._ledger = SyncLedger()
        self._ledger.restore(state.base_revision, state.snapshot, state.pending, state.events)
        self._metrics.revision(self._revision)
        logger.debug(f"Storage '{self._name}' unpacked at revision {self._revision}")
        return Ok(None)

    # =========================================================================
    # SYNCHRONIZATION
    # =========================================================================
    def get_diff(self) -> Diff:
        return self._ledger.diff()

    def mix(self, lhs: Diff, rhs: Diff) -> Diff:
        return mix(lhs, rhs)

    def put_diff(self, diff: Diff) -> bool:
        """
        Rewind to the last boundary and replay a (mixed) diff.

        Compressions during replay adopt the summary recorded in the diff
        when the raw bucket content matches, so nodes holding the same
        boundary end with the same buckets. Local points the diff does
        not contain are re-added on top as pending.

        Returns:
            True if applied; False if the diff was computed against a
            different boundary, holds invalid points or could not be
            compressed during replay (state unchanged)
        """
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

        previous, revision, ledger = self._snapshot(), self._revision, self._ledger
        self._ledger = SyncLedger()
        try:
            self._restore(snapshot)
            summaries = diff.summaries()
            for point in diff.new_points:
                self._ingest(point, summaries)

            base = diff.base_revision + len(diff.new_points) + 1
            self._revision = base
            self._ledger.reset(base, self._snapshot())

            for point in carried:
                self._ingest(point, None)
                self._ledger.record_point(point)
                self._revision += 1
        except CompressionError as e:
            self._restore(previous)
            self._revision, self._ledger = revision, ledger
            self._metrics.diff_rejected()
            logger.error(f"Storage '{self._name}' rolled back diff: {e}")
            return False

        self._metrics.diff_applied()
        self._metrics.revision(self._revision)
        logger.info(
            f"Storage '{self._name}' applied diff: {len(diff.new_points)} points, "
            f"{len(carried)} carried, revision {self._revision}"
        )
        return True

    def _snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            buckets=[b.copy() for b in self._buckets],
            epoch=self._epoch,
            dimension=self._dimension,
            rng_state=self._rng.bit_generator.state,
        )

    def _restore(self, snapshot: StateSnapshot) -> None:
        self._buckets = [b.copy() for b in snapshot.buckets]
        self._epoch = snapshot.epoch
        self._dimension = snapshot.dimension
        self._rng.bit_generator.state = snapshot.rng_state

    def __repr__(self) -> str:
        return (
            f"CompressiveStorage(name={self._name!r}, method={self._method.value}, "
            f"revision={self._revision}, buckets={len(self._buckets)})"
        )


def _bucket_event(kind: EventKind, bucket: Bucket) -> CompressionEvent:
    """Event for a bucket leaving storage (purge or eviction)."""
    return CompressionEvent(
        kind=kind,
        epoch=bucket.created_epoch,
        source_digest=bucket.digest(),
        source_size=bucket.size,
        source_weight=bucket.total_weight,
    )
