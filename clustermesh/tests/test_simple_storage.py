"""
Integration Tests: Simple Storage

Tests:
    - FIFO window retention and eviction events
    - Forgetting parameters ignored
    - Validation, clear and stats
"""

import pytest

from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import DimensionMismatch
from clustermesh.core.types import ClusteringMethod, CompressorMethod
from clustermesh.storage.protocols import ClusteringStorage
from clustermesh.storage.simple import SimpleStorage
from clustermesh.storage.sync import EventKind
from clustermesh.tests.conftest import make_points


def _storage(collector, **overrides):
    values = dict(bucket_size=5, compressed_bucket_size=5)
    values.update(overrides)
    return SimpleStorage("window", ClusteringMethod.KMEANS, StorageConfig(**values), collector)


class TestWindow:
    """Tests for the retention window."""

    def test_keeps_most_recent(self, collector):
        """Test the window keeps the most recent points."""
        storage = _storage(collector)
        points = make_points(8)
        for p in points:
            storage.add(p)
        assert storage.get_all() == points[-5:]
        assert storage.get_revision() == 8

    def test_eviction_events(self, collector):
        """Test listeners see one event per evicted point."""
        storage = _storage(collector)
        events = []
        storage.on_update(events.append)
        points = make_points(7)
        for p in points:
            storage.add(p)

        assert [e.kind for e in events] == [EventKind.EVICT, EventKind.EVICT]
        assert [e.source_weight for e in events] == [1.0, 1.0]
        assert all(e.source_size == 1 for e in events)

    def test_ledger_keeps_one_eviction_event(self, collector):
        """Test evictions between boundaries fold into a single diff event."""
        storage = _storage(collector)
        events = []
        storage.on_update(events.append)
        for p in make_points(12):
            storage.add(p)

        assert len(events) == 7
        diff = storage.get_diff()
        assert len(diff.compression_events) == 1
        folded = diff.compression_events[0]
        assert folded.kind == EventKind.EVICT
        assert folded.source_size == 7
        assert folded.source_weight == pytest.approx(7.0)
        assert len(diff.new_points) == 12

    def test_forgetting_ignored(self, collector):
        """Test forgetting parameters have no effect."""
        storage = _storage(collector, forgetting_factor=0.1, forgetting_threshold=100.0)
        for p in make_points(12):
            storage.add(p)
        assert [p.weight for p in storage.get_all()] == [1.0] * 5

    def test_never_compresses(self, collector):
        """Test points are kept verbatim."""
        storage = _storage(collector)
        points = make_points(5)
        for p in points:
            storage.add(p)
        assert storage.get_all() == points
        assert storage.stats().compressed_buckets == 0


class TestBehaviour:
    """Tests for the shared storage surface."""

    def test_satisfies_protocol(self, collector):
        """Test the storage satisfies the storage protocol."""
        storage = _storage(collector)
        assert isinstance(storage, ClusteringStorage)
        assert storage.compressor_method == CompressorMethod.SIMPLE

    def test_dimension_mismatch(self, collector):
        """Test a point of another dimension is rejected."""
        storage = _storage(collector)
        storage.add([0.0])
        result = storage.add([0.0, 1.0])
        assert isinstance(result.error, DimensionMismatch)
        assert len(storage.get_all()) == 1
        assert storage.get_revision() == 1

    def test_clear(self, collector):
        """Test clear empties the window."""
        storage = _storage(collector)
        for p in make_points(3):
            storage.add(p)
        storage.clear()
        assert storage.get_all() == []
        assert storage.get_revision() == 0
        assert storage.stats().bucket_count == 0

    def test_stats(self, collector):
        """Test stats reflect the window."""
        storage = _storage(collector)
        for p in make_points(9, dim=4):
            storage.add(p)
        stats = storage.stats()
        assert stats.point_count == 5
        assert stats.dimension == 4
        assert stats.total_weight == pytest.approx(5.0)
        assert stats.revision == 9
