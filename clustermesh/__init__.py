"""
Compressive Clustering Storage Engine

Bounded, revisioned storage of weighted points for online clustering:
- Compressive storage: full buckets reduced to coreset summaries whose
  clustering cost approximates the raw data, with exponential forgetting
- Simple storage: fixed window of the most recent raw points
- Diff/mix synchronization so independent nodes converge on one summary
- Compact packed state (msgpack + LZ4) for checkpoints and transfer

Memory bound (compressive):
    bucket_length × max(bucket_size, compressed_bucket_size) points
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from clustermesh.core.types import (
    Result,
    Ok,
    Err,
    WeightedPoint,
    ClusteringMethod,
    CompressorMethod,
)
from clustermesh.core.errors import (
    ClusteringError,
    InvalidParameter,
    DimensionMismatch,
    UnsupportedMethod,
    StorageError,
    CompressionError,
)
from clustermesh.core.config import StorageConfig

from clustermesh.storage import (
    ClusteringStorage,
    CompressiveStorage,
    SimpleStorage,
    StorageFactory,
    StorageStats,
    create_storage,
    Diff,
    CompressionEvent,
    EventKind,
    mix,
)

__all__ = [
    "__version__",
    # Core
    "Result",
    "Ok",
    "Err",
    "WeightedPoint",
    "ClusteringMethod",
    "CompressorMethod",
    "ClusteringError",
    "InvalidParameter",
    "DimensionMismatch",
    "UnsupportedMethod",
    "StorageError",
    "CompressionError",
    "StorageConfig",
    # Storage
    "ClusteringStorage",
    "CompressiveStorage",
    "SimpleStorage",
    "StorageFactory",
    "StorageStats",
    "create_storage",
    # Sync
    "Diff",
    "CompressionEvent",
    "EventKind",
    "mix",
]
