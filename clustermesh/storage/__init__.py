"""
Storage module: bucketed point storage and the diff/mix protocol.

Variants:
- CompressiveStorage: coreset-compressed buckets with forgetting
- SimpleStorage: fixed window of the most recent raw points
"""

from clustermesh.storage.bucket import Bucket, ForgettingPolicy
from clustermesh.storage.sync import (
    CompressionEvent,
    Diff,
    EventKind,
    SyncLedger,
    mix,
)
from clustermesh.storage.protocols import ClusteringStorage, StorageStats
from clustermesh.storage.serialization import pack_state, unpack_state
from clustermesh.storage.compressive import CompressiveStorage
from clustermesh.storage.simple import SimpleStorage
from clustermesh.storage.factory import StorageFactory, create_storage

__all__ = [
    "Bucket",
    "ForgettingPolicy",
    "CompressionEvent",
    "Diff",
    "EventKind",
    "SyncLedger",
    "mix",
    "ClusteringStorage",
    "StorageStats",
    "pack_state",
    "unpack_state",
    "CompressiveStorage",
    "SimpleStorage",
    "StorageFactory",
    "create_storage",
]
