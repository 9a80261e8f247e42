"""
Unit Tests: Storage Factory

Tests:
    - Variant selection by name
    - Config as dataclass, mapping or default
    - Unsupported names and invalid configs as Err results
"""

from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import ErrorCode, InvalidParameter, UnsupportedMethod
from clustermesh.core.types import ClusteringMethod, CompressorMethod
from clustermesh.storage.compressive import CompressiveStorage
from clustermesh.storage.factory import StorageFactory, create_storage
from clustermesh.storage.protocols import ClusteringStorage
from clustermesh.storage.simple import SimpleStorage


class TestCreate:
    """Tests for successful construction."""

    def test_compressive_kmeans(self, collector):
        """Test a compressive kmeans storage is built."""
        storage = create_storage("s", "kmeans", "compressive", StorageConfig(), collector).unwrap()
        assert isinstance(storage, CompressiveStorage)
        assert isinstance(storage, ClusteringStorage)
        assert storage.method == ClusteringMethod.KMEANS

    def test_simple_gmm_from_mapping(self, collector):
        """Test a simple gmm storage is built from a mapping."""
        result = create_storage("s", "gmm", "simple", {"bucket_size": 20,
                                                        "compressed_bucket_size": 5}, collector)
        storage = result.unwrap()
        assert isinstance(storage, SimpleStorage)
        assert storage.method == ClusteringMethod.GMM
        assert storage.config.bucket_size == 20

    def test_enum_arguments(self, collector):
        """Test enum arguments and the default config."""
        result = create_storage("s", ClusteringMethod.GMM, CompressorMethod.COMPRESSIVE,
                                collector=collector)
        assert result.is_ok()
        assert result.unwrap().config == StorageConfig()

    def test_simple_from_bucket_size_alone(self, collector):
        """Test a simple storage configured by bucket_size only."""
        storage = create_storage("test", "kmeans", "simple", {"bucket_size": 10}, collector).unwrap()
        assert isinstance(storage, SimpleStorage)
        assert storage.config.bucket_size == 10
        assert storage.config.compressed_bucket_size == 10
        for i in range(12):
            storage.add([float(i)])
        assert len(storage.get_all()) == 10

    def test_compressive_from_bucket_size_alone(self, collector):
        """Test the same mapping builds a compressive storage."""
        result = create_storage("test", "gmm", "compressive", {"bucket_size": 10}, collector)
        assert result.unwrap().config.compressed_bucket_size == 10

    def test_class_spelling(self, collector):
        """Test the class-level factory and its method lists."""
        result = StorageFactory.create("s", "kmeans", "simple", None, collector)
        assert isinstance(result.unwrap(), SimpleStorage)
        assert StorageFactory.supported_methods() == ["kmeans", "gmm"]
        assert StorageFactory.supported_compressors() == ["simple", "compressive"]


class TestFailures:
    """Tests for rejected requests."""

    def test_unknown_method(self, collector):
        """Test an unknown method is an Err."""
        result = create_storage("s", "dbscan", "compressive", collector=collector)
        assert result.is_err()
        assert isinstance(result.error, UnsupportedMethod)
        assert result.error.code == ErrorCode.FACTORY_UNSUPPORTED_METHOD
        assert result.error.details["method"] == "dbscan"

    def test_unknown_compressor(self, collector):
        """Test an unknown compressor is an Err."""
        result = create_storage("s", "kmeans", "lossy", collector=collector)
        assert isinstance(result.error, UnsupportedMethod)

    def test_invalid_config(self, collector):
        """Test an invalid config is an Err naming the field."""
        result = create_storage("s", "kmeans", "compressive",
                                StorageConfig(forgetting_factor=2.0), collector)
        assert isinstance(result.error, InvalidParameter)
        assert result.error.field_name == "forgetting_factor"

    def test_unknown_config_key(self, collector):
        """Test an unknown config key is an Err."""
        result = create_storage("s", "kmeans", "compressive", {"buckets": 3}, collector)
        assert result.error.code == ErrorCode.CONFIG_UNKNOWN_FIELD
