"""
Diff/Mix Synchronization Protocol

Lets independently running storages converge on one shared summary by
exchanging deltas instead of full state.

Round:
    1. Every node calls get_diff(): points and bucket events recorded
       since its last boundary, tagged with the boundary's revision
    2. A transport (not part of this package) collects the diffs and
       reduces them pairwise with mix(), in any order
    3. Every node calls put_diff(mixed): it rewinds to its boundary,
       replays the mixed points through its own add path, and the
       replayed state becomes its new boundary

Because every node rewinds to the same boundary and replays the same
canonically ordered points, nodes sharing a seed end each round with
identical buckets and identical base revisions.

Design:
    mix() is a pure function of two immutable Diff values. It sorts the
    concatenated points and events into canonical order, which makes it
    associative and commutative, so any reduction tree gives the same
    result.
"""

from __future__ import annotations

import hashlib
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from clustermesh.core.types import WeightedPoint, total_weight


# =============================================================================
# BUCKET EVENTS
# =============================================================================
class EventKind(Enum):
    """Bucket lifecycle transitions recorded for synchronization."""
    COMPRESS = "compress"  # raw bucket replaced by its summary
    PURGE = "purge"        # bucket dropped by the forgetting policy
    EVICT = "evict"        # oldest bucket (or point) dropped for capacity


@dataclass(frozen=True, slots=True)
class CompressionEvent:
    """
    One bucket replaced by the bucket(s) it produced.

    Attributes:
        kind: What happened to the source bucket
        epoch: Epoch the source bucket was created in
        source_digest: SHA-256 of the source bucket's (data, weight) content
        source_size: Number of points in the source bucket
        source_weight: Total weight of the source bucket
        produced: Points that replaced it (empty for purge and evict)
    """
    kind: EventKind
    epoch: int
    source_digest: str
    source_size: int
    source_weight: float
    produced: tuple[WeightedPoint, ...] = ()

    def sort_key(self) -> tuple[Any, ...]:
        return (
            self.epoch,
            self.kind.value,
            self.source_digest,
            self.source_size,
            self.source_weight,
            tuple(p.sort_key() for p in self.produced),
        )

    def merged(self, later: CompressionEvent) -> CompressionEvent:
        """
        One event standing for this one followed by `later`.

        Sizes and weights add up; the digest chains both source digests.
        """
        chained = hashlib.sha256(
            f"{self.source_digest}:{later.source_digest}".encode()
        ).hexdigest()
        return CompressionEvent(
            kind=self.kind,
            epoch=self.epoch,
            source_digest=chained,
            source_size=self.source_size + later.source_size,
            source_weight=self.source_weight + later.source_weight,
            produced=self.produced + later.produced,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging."""
        return {
            "kind": self.kind.value,
            "epoch": self.epoch,
            "source_digest": self.source_digest,
            "source_size": self.source_size,
            "source_weight": self.source_weight,
            "produced": len(self.produced),
        }


# =============================================================================
# DIFF
# =============================================================================
@dataclass(frozen=True, slots=True)
class Diff:
    """
    Delta sufficient to rebuild a node's post-state from its boundary.

    Attributes:
        base_revision: Revision of the boundary the delta starts from
        new_points: Points added since the boundary
        compression_events: Bucket events since the boundary
    """
    base_revision: int
    new_points: tuple[WeightedPoint, ...] = ()
    compression_events: tuple[CompressionEvent, ...] = ()

    @property
    def total_weight(self) -> float:
        return total_weight(self.new_points)

    @property
    def is_empty(self) -> bool:
        return not self.new_points and not self.compression_events

    def summaries(self) -> dict[str, tuple[WeightedPoint, ...]]:
        """Produced points of every COMPRESS event, keyed by source digest."""
        return {
            e.source_digest: e.produced
            for e in self.compression_events
            if e.kind == EventKind.COMPRESS
        }


def mix(lhs: Diff, rhs: Diff) -> Diff:
    """
    Combine two diffs without any storage state.

    The base revision is the newer of the two; points and events are
    concatenated and put in canonical order.

    Complexity: O((n + m) log(n + m))
    """
    return Diff(
        base_revision=max(lhs.base_revision, rhs.base_revision),
        new_points=tuple(sorted(
            lhs.new_points + rhs.new_points, key=WeightedPoint.sort_key,
        )),
        compression_events=tuple(sorted(
            lhs.compression_events + rhs.compression_events, key=CompressionEvent.sort_key,
        )),
    )


# =============================================================================
# SYNC LEDGER
# =============================================================================
@dataclass(slots=True)
class StateSnapshot:
    """
    Storage state at a synchronization boundary.

    Buckets are copies; rng_state is the bit-generator state dict (None
    for variants without randomness).
    """
    buckets: list[Any] = field(default_factory=list)
    epoch: int = 0
    dimension: Optional[int] = None
    rng_state: Optional[dict[str, Any]] = None


class SyncLedger:
    """
    Per-storage bookkeeping for the diff/mix protocol.

    Owned by a storage instance (composition, not a shared base class).
    Tracks the last boundary and everything recorded since.
    """

    __slots__ = ("_base_revision", "_snapshot", "_pending", "_events")

    def __init__(self) -> None:
        self._base_revision = 0
        self._snapshot = StateSnapshot()
        self._pending: list[WeightedPoint] = []
        self._events: list[CompressionEvent] = []

    @property
    def base_revision(self) -> int:
        return self._base_revision

    @property
    def snapshot(self) -> StateSnapshot:
        return self._snapshot

    @property
    def pending(self) -> list[WeightedPoint]:
        return list(self._pending)

    @property
    def events(self) -> list[CompressionEvent]:
        return list(self._events)

    def reset(self, revision: int, snapshot: StateSnapshot) -> None:
        """Start a new boundary at `revision` with nothing pending."""
        self._base_revision = revision
        self._snapshot = snapshot
        self._pending = []
        self._events = []

    def restore(
        self,
        revision: int,
        snapshot: StateSnapshot,
        pending: list[WeightedPoint],
        events: list[CompressionEvent],
    ) -> None:
        """Reinstate a ledger decoded from packed state."""
        self._base_revision = revision
        self._snapshot = snapshot
        self._pending = list(pending)
        self._events = list(events)

    def record_point(self, point: WeightedPoint) -> None:
        self._pending.append(point)

    def record_event(self, event: CompressionEvent, coalesce: bool = False) -> None:
        """
        Append an event, or fold it into the last one when coalescing.

        Coalescing merges consecutive events of the same kind and epoch,
        keeping the ledger at one entry per run of evictions.
        """
        last = self._events[-1] if self._events else None
        if coalesce and last is not None and (last.kind, last.epoch) == (event.kind, event.epoch):
            self._events[-1] = last.merged(event)
        else:
            self._events.append(event)

    def diff(self) -> Diff:
        """Everything recorded since the boundary; repeated calls are equal."""
        return Diff(
            base_revision=self._base_revision,
            new_points=tuple(self._pending),
            compression_events=tuple(self._events),
        )

    def accepts(self, diff: Diff) -> bool:
        """A diff applies only to the boundary it was computed against."""
        return diff.base_revision == self._base_revision

    def carried_over(self, diff: Diff) -> list[WeightedPoint]:
        """
        Pending points the diff does not contain (multiset difference).

        These arrived after the diff was captured, or this node's own
        diff was left out of the mix; they must survive the rewind.
        """
        remaining = Counter(diff.new_points)
        carried: list[WeightedPoint] = []
        for point in self._pending:
            if remaining[point] > 0:
                remaining[point] -= 1
            else:
                carried.append(point)
        return carried
