"""
Storage Protocol Definitions

Provides the structural-subtyping protocol (PEP 544) every storage
variant satisfies, so callers and the factory never depend on a
concrete class:
- ClusteringStorage: accumulate, read, persist and synchronize points

Design Principles:
    - Runtime operations return Result values; construction raises
    - Synchronous and single-writer; callers serialize access
    - Variants are independent classes, not a shared base class
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import ClusteringError
from clustermesh.core.types import (
    ClusteringMethod,
    CompressorMethod,
    Result,
    WeightedPoint,
)
from clustermesh.storage.sync import CompressionEvent, Diff

UpdateHandler = Callable[[CompressionEvent], None]


# =============================================================================
# STORAGE STATISTICS
# =============================================================================
@dataclass(frozen=True, slots=True)
class StorageStats:
    """Point-in-time view of a storage's size and progress."""
    name: str
    revision: int
    bucket_count: int
    point_count: int
    total_weight: float
    dimension: Optional[int]
    epoch: int
    compressed_buckets: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "revision": self.revision,
            "bucket_count": self.bucket_count,
            "point_count": self.point_count,
            "total_weight": self.total_weight,
            "dimension": self.dimension,
            "epoch": self.epoch,
            "compressed_buckets": self.compressed_buckets,
        }


# =============================================================================
# CLUSTERING STORAGE PROTOCOL
# =============================================================================
@runtime_checkable
class ClusteringStorage(Protocol):
    """
    Bounded, revisioned store of weighted points feeding a clustering model.

    Example:
        storage = create_storage("shard-0", "kmeans", "compressive", config).unwrap()
        storage.add(WeightedPoint.from_values([0.1, 0.2]))
        points = storage.get_all()
    """

    @property
    def name(self) -> str: ...

    @property
    def method(self) -> ClusteringMethod: ...

    @property
    def compressor_method(self) -> CompressorMethod: ...

    @property
    def config(self) -> StorageConfig: ...

    @abstractmethod
    def add(self, point: Any) -> Result[int, ClusteringError]:
        """
        Insert one point.

        Returns:
            Ok(revision): The new revision
            Err(DimensionMismatch | InvalidParameter): Nothing changed
        """
        ...

    @abstractmethod
    def get_all(self) -> list[WeightedPoint]:
        """Every retained point, oldest bucket first."""
        ...

    @abstractmethod
    def get_revision(self) -> int:
        ...

    @abstractmethod
    def clear(self) -> None:
        """Back to the empty state at revision 0."""
        ...

    @abstractmethod
    def pack(self) -> bytes:
        ...

    @abstractmethod
    def unpack(self, data: bytes) -> Result[None, ClusteringError]:
        """Replace all state with a packed payload; no change on Err."""
        ...

    @abstractmethod
    def get_diff(self) -> Diff:
        ...

    @abstractmethod
    def put_diff(self, diff: Diff) -> bool:
        """Apply a (mixed) diff; False for a stale diff, state unchanged."""
        ...

    @abstractmethod
    def mix(self, lhs: Diff, rhs: Diff) -> Diff:
        ...

    @abstractmethod
    def stats(self) -> StorageStats:
        ...

    @abstractmethod
    def on_update(self, handler: UpdateHandler) -> None:
        """Register a listener for every bucket event the storage emits."""
        ...
