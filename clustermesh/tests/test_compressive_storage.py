"""
Integration Tests: Compressive Storage

Tests:
    - Bucket compression scenario and retention bound
    - Weight conservation and revision monotonicity
    - Forgetting (decay, purge) and eviction
    - Input validation
    - Listeners, stats and clear
"""

import logging
import math

import pytest

from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import (
    CompressionError,
    DimensionMismatch,
    ErrorCode,
    InvalidParameter,
)
from clustermesh.core.types import ClusteringMethod, CompressorMethod, WeightedPoint
from clustermesh.storage.compressive import CompressiveStorage
from clustermesh.storage.protocols import ClusteringStorage
from clustermesh.storage.sync import Diff, EventKind
from clustermesh.tests.conftest import make_points


def _storage(collector, method=ClusteringMethod.KMEANS, **overrides):
    values = dict(
        bucket_size=10,
        bucket_length=2,
        compressed_bucket_size=4,
        bicriteria_base_size=2,
        forgetting_factor=1.0,
        forgetting_threshold=0.0,
        seed=42,
    )
    values.update(overrides)
    return CompressiveStorage("test", method, StorageConfig(**values), collector)


def _weight(storage):
    return math.fsum(p.weight for p in storage.get_all())


class _FailingCompressor:
    """Consumes randomness, then fails like a numerical error would."""

    def compress(self, points, target_size, base_size, rng):
        rng.random()
        raise ValueError("probabilities contain NaN")


class TestScenario:
    """Tests for the reference ten-point scenario."""

    def test_ten_points_compress_to_four(self, collector):
        """Test ten points compress to at most four."""
        storage = _storage(collector)
        for p in make_points(10):
            storage.add(p)

        points = storage.get_all()
        assert len(points) <= 4
        assert _weight(storage) == pytest.approx(10.0)
        assert storage.stats().compressed_buckets == 1

    def test_eleventh_point_opens_raw_bucket(self, collector):
        """Test the next point opens a new raw bucket."""
        storage = _storage(collector)
        for p in make_points(11):
            storage.add(p)

        stats = storage.stats()
        assert stats.bucket_count == 2
        assert stats.epoch == 1
        assert _weight(storage) == pytest.approx(11.0)
        assert storage.get_all()[-1] == make_points(11)[-1]

    def test_exactly_four_centroids_for_spread_data(self, collector):
        """Test spread data yields exactly four centroids."""
        storage = _storage(collector)
        for i in range(10):
            storage.add(WeightedPoint.from_values([float(i) * 10.0, 0.0]))
        assert len(storage.get_all()) == 4
        storage.add([0.0, 1.0])
        assert len(storage.get_all()) == 5


class TestInvariants:
    """Tests for storage-wide invariants."""

    def test_revision_monotonic(self, collector):
        """Test every add increments the revision by one."""
        storage = _storage(collector)
        revisions = [storage.add(p).unwrap() for p in make_points(35)]
        assert revisions == list(range(1, 36))
        assert storage.get_revision() == 35

    def test_weight_conserved_without_forgetting(self, collector):
        """Test total weight is conserved with factor 1.0."""
        storage = _storage(collector, bucket_length=100)
        points = make_points(95, seed=4)
        for p in points:
            storage.add(p)
        assert _weight(storage) == pytest.approx(95.0)

    def test_bounded_retention(self, collector):
        """Test buckets and points stay within their bounds."""
        storage = _storage(collector)
        for p in make_points(200, seed=5):
            storage.add(p)
            stats = storage.stats()
            assert stats.bucket_count <= 2
            assert stats.point_count <= 2 * 10

    def test_satisfies_protocol(self, collector):
        """Test the storage satisfies the storage protocol."""
        storage = _storage(collector)
        assert isinstance(storage, ClusteringStorage)
        assert storage.compressor_method == CompressorMethod.COMPRESSIVE
        assert storage.method == ClusteringMethod.KMEANS
        assert storage.name == "test"

    def test_gmm_storage(self, collector):
        """Test gmm storage compresses and conserves weight."""
        storage = _storage(collector, method=ClusteringMethod.GMM, bucket_length=10)
        for p in make_points(40, dim=3, seed=6):
            storage.add(p)
        assert _weight(storage) == pytest.approx(40.0)
        assert storage.stats().compressed_buckets == 4


class TestForgetting:
    """Tests for decay, purge and eviction."""

    def test_older_buckets_decay(self, collector):
        """Test only older buckets lose weight."""
        storage = _storage(collector, bucket_size=4, compressed_bucket_size=2,
                           bucket_length=10, forgetting_factor=0.5, forgetting_threshold=0.5)
        for p in make_points(8):
            storage.add(p)
        # First summary decayed once (4 -> 2), second untouched
        assert _weight(storage) == pytest.approx(6.0)

    def test_light_buckets_purged(self, collector):
        """Test buckets at or below the threshold are purged."""
        storage = _storage(collector, bucket_size=4, compressed_bucket_size=2,
                           bucket_length=10, forgetting_factor=0.5, forgetting_threshold=3.0)
        kinds = []
        storage.on_update(lambda e: kinds.append(e.kind))
        for p in make_points(8):
            storage.add(p)

        assert kinds == [EventKind.COMPRESS, EventKind.COMPRESS, EventKind.PURGE]
        assert storage.stats().bucket_count == 1
        assert _weight(storage) == pytest.approx(4.0)

    def test_oldest_bucket_evicted(self, collector):
        """Test the oldest bucket is evicted when a new one opens."""
        storage = _storage(collector, bucket_size=2, compressed_bucket_size=1, bucket_length=2)
        events = []
        storage.on_update(events.append)
        for p in make_points(5):
            storage.add(p)

        assert [e.kind for e in events] == [EventKind.COMPRESS, EventKind.COMPRESS, EventKind.EVICT]
        assert events[-1].epoch == 0
        assert _weight(storage) == pytest.approx(3.0)


class TestValidation:
    """Tests for rejected input."""

    def test_dimension_mismatch(self, collector):
        """Test a point of another dimension is rejected."""
        storage = _storage(collector)
        storage.add([1.0, 2.0])
        result = storage.add([1.0, 2.0, 3.0])
        assert result.is_err()
        assert isinstance(result.error, DimensionMismatch)
        assert storage.get_revision() == 1
        assert len(storage.get_all()) == 1

    def test_non_finite(self, collector):
        """Test NaN coordinates are rejected."""
        storage = _storage(collector)
        result = storage.add([float("nan"), 1.0])
        assert result.is_err()
        assert isinstance(result.error, InvalidParameter)
        assert result.error.code == ErrorCode.INPUT_INVALID_POINT
        assert result.error.field_name == "data"
        assert storage.get_revision() == 0

    def test_negative_weight(self, collector):
        """Test negative weights are rejected."""
        storage = _storage(collector)
        result = storage.add(WeightedPoint.from_values([1.0], weight=-1.0))
        assert result.is_err()
        assert result.error.code == ErrorCode.INPUT_INVALID_POINT

    def test_non_numeric(self, collector):
        """Test non-numeric coordinates are rejected."""
        result = _storage(collector).add(["a", "b"])
        assert result.is_err()
        assert result.error.code == ErrorCode.INPUT_INVALID_POINT

    def test_invalid_config_raises(self, collector):
        """Test construction raises on an invalid config."""
        with pytest.raises(InvalidParameter) as exc:
            _storage(collector, bucket_size=0)
        assert exc.value.field_name == "bucket_size"


class TestLifecycle:
    """Tests for listeners, stats and clear."""

    def test_clear_resets(self, collector):
        """Test clear empties the storage and frees the dimension."""
        storage = _storage(collector)
        for p in make_points(15):
            storage.add(p)
        storage.clear()

        assert storage.get_revision() == 0
        assert storage.get_all() == []
        assert storage.get_diff().is_empty
        # Dimension is free again after clear
        assert storage.add([1.0, 2.0, 3.0]).unwrap() == 1

    def test_clear_reseeds(self, collector):
        """Test a cleared storage repeats a fresh storage exactly."""
        points = make_points(25, seed=8)
        fresh, reused = _storage(collector), _storage(collector)
        for p in make_points(17, seed=9):
            reused.add(p)
        reused.clear()
        for p in points:
            fresh.add(p)
            reused.add(p)
        assert fresh.get_all() == reused.get_all()

    def test_listener_error_is_logged(self, collector, caplog):
        """Test a failing listener is logged and the add succeeds."""
        storage = _storage(collector)

        def broken(event):
            raise RuntimeError("listener down")

        storage.on_update(broken)
        with caplog.at_level(logging.ERROR, logger="clustermesh.storage.compressive"):
            for p in make_points(10):
                assert storage.add(p).is_ok()
        assert "listener down" in caplog.text
        assert len(storage.get_all()) <= 4

    def test_stats(self, collector):
        """Test stats reflect the stored buckets."""
        storage = _storage(collector)
        for p in make_points(13):
            storage.add(p)
        stats = storage.stats()
        assert stats.revision == 13
        assert stats.dimension == 2
        assert stats.total_weight == pytest.approx(13.0)
        assert stats.point_count == len(storage.get_all())
        assert stats.to_dict()["name"] == "test"


class TestCompressionFailure:
    """Tests for extreme input and compressor failures."""

    def test_huge_coordinates_accepted(self, collector):
        """Test ±1e200 coordinates fill and compress a bucket."""
        storage = _storage(collector, bucket_size=3, compressed_bucket_size=1,
                           bicriteria_base_size=3)
        for v in ([1e200, 0.0], [-1e200, 0.0], [0.0, 1e200]):
            assert storage.add(v).is_ok()

        assert storage.get_revision() == 3
        assert len(storage.get_all()) == 1
        assert storage.get_all()[0].weight == pytest.approx(3.0)
        assert len(storage.get_diff().new_points) == 3

    def test_huge_coordinates_gmm(self, collector):
        """Test the standardized geometry copes with ±1e200 coordinates."""
        storage = _storage(collector, method=ClusteringMethod.GMM, bucket_size=4,
                           compressed_bucket_size=2)
        for v in ([1e200, 0.0], [-1e200, 0.0], [0.0, 1e200], [0.0, -1e200], [1.0, 1.0]):
            assert storage.add(v).is_ok()
        assert _weight(storage) == pytest.approx(5.0)

    def test_failed_add_leaves_no_trace(self, collector):
        """Test a failing compression undoes the add, RNG included."""
        storage = _storage(collector, bucket_size=3, compressed_bucket_size=1)
        twin = _storage(collector, bucket_size=3, compressed_bucket_size=1)
        for p in make_points(2):
            storage.add(p)
            twin.add(p)
        before_points, before_diff = storage.get_all(), storage.get_diff()

        compressor = storage._compressor
        storage._compressor = _FailingCompressor()
        result = storage.add([5.0, 5.0])

        assert result.is_err()
        assert isinstance(result.error, CompressionError)
        assert result.error.code == ErrorCode.COMPRESSION_FAILED
        assert storage.get_all() == before_points
        assert storage.get_revision() == 2
        assert storage.get_diff() == before_diff

        storage._compressor = compressor
        assert storage.add([5.0, 5.0]).unwrap() == 3
        twin.add([5.0, 5.0])
        assert storage.get_all() == twin.get_all()
        assert storage.stats().compressed_buckets == 1

    def test_failed_replay_rolls_back(self, collector):
        """Test put_diff restores the pre-diff state when replay fails."""
        storage = _storage(collector, bucket_size=3, compressed_bucket_size=1)
        for p in make_points(2):
            storage.add(p)
        before_points, before_diff = storage.get_all(), storage.get_diff()

        storage._compressor = _FailingCompressor()
        assert not storage.put_diff(Diff(0, tuple(make_points(4, seed=1))))

        assert storage.get_all() == before_points
        assert storage.get_revision() == 2
        assert storage.get_diff() == before_diff
        assert collector.counter("diffs_rejected_total").get(storage="test") == 1.0
