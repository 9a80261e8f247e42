"""
Buckets and the Forgetting Policy

A bucket is the set of points gathered during one compression epoch:
raw while it accumulates, compressed once it reaches bucket_size.
Compressed buckets never grow again; they only lose weight to the
forgetting policy and finally disappear by purge or eviction.

Forgetting:
    Once per completed epoch every older bucket's weights are scaled by
    the forgetting factor, so older summaries lose influence
    monotonically. A bucket whose total weight falls to or below the
    threshold is purged. Purging is lossy and is what keeps memory
    bounded regardless of how much data has streamed through.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Iterable, Optional

from clustermesh.core.types import WeightedPoint, total_weight


# =============================================================================
# BUCKET
# =============================================================================
@dataclass(slots=True)
class Bucket:
    """
    Time-ordered collection of weighted points from one epoch.

    Attributes:
        points: Points in insertion order (no meaningful order once compressed)
        created_epoch: Epoch counter value when the bucket was started
        compressed: True once the bucket has been summarised
    """
    points: list[WeightedPoint] = field(default_factory=list)
    created_epoch: int = 0
    compressed: bool = False

    @property
    def size(self) -> int:
        return len(self.points)

    @property
    def total_weight(self) -> float:
        return total_weight(self.points)

    def add(self, point: WeightedPoint) -> None:
        """Append a point to a raw bucket."""
        self.points.append(point)

    def replace_with_summary(self, summary: Iterable[WeightedPoint]) -> None:
        """Swap the raw points for their compressed summary."""
        self.points = list(summary)
        self.compressed = True

    def decay(self, factor: float) -> None:
        """Scale every point's weight by factor in (0, 1]."""
        if factor == 1.0:
            return
        self.points = [p.with_weight(p.weight * factor) for p in self.points]

    def should_purge(self, threshold: float) -> bool:
        """True when the bucket's aggregate weight is at or below threshold."""
        return self.total_weight <= threshold

    def digest(self) -> str:
        """
        SHA-256 over every point's (data, weight) as big-endian doubles.

        Identifies a raw bucket's exact content so compression events can
        be matched to the bucket they summarised on another node.
        """
        h = hashlib.sha256()
        for p in self.points:
            h.update(struct.pack(">I", len(p.data)))
            h.update(struct.pack(f">{len(p.data)}d", *p.data))
            h.update(struct.pack(">d", p.weight))
        return h.hexdigest()

    def copy(self) -> Bucket:
        """Shallow copy; points are immutable so sharing them is safe."""
        return Bucket(points=list(self.points), created_epoch=self.created_epoch,
                      compressed=self.compressed)


# =============================================================================
# FORGETTING POLICY
# =============================================================================
@dataclass(frozen=True, slots=True)
class ForgettingPolicy:
    """
    Exponential decay with threshold purge.

    Attributes:
        factor: Weight multiplier applied per completed epoch, in (0, 1]
        threshold: Buckets whose total weight is <= threshold are purged
    """
    factor: float = 1.0
    threshold: float = 0.0

    @property
    def is_noop(self) -> bool:
        """No decay: only buckets already at or below threshold can be purged."""
        return self.factor == 1.0

    def apply(
        self,
        buckets: list[Bucket],
        current: Optional[Bucket] = None,
    ) -> tuple[list[Bucket], list[Bucket]]:
        """
        Decay every bucket except `current`, then split off purged ones.

        Args:
            buckets: Retained buckets, oldest first
            current: The bucket of the epoch that just completed; it is
                neither decayed nor purged in this pass

        Returns:
            (kept, purged) preserving the original order
        """
        kept: list[Bucket] = []
        purged: list[Bucket] = []
        for bucket in buckets:
            if bucket is current:
                kept.append(bucket)
                continue
            bucket.decay(self.factor)
            if bucket.should_purge(self.threshold):
                purged.append(bucket)
            else:
                kept.append(bucket)
        return kept, purged
