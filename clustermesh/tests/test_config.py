"""
Unit Tests: Configuration and Errors

Tests:
    - StorageConfig defaults and validation
    - Mapping and environment loading
    - Error codes and serialization
"""

import pytest

from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import (
    DimensionMismatch,
    ErrorCode,
    InvalidParameter,
    StorageError,
    UnsupportedMethod,
)


class TestValidation:
    """Tests for StorageConfig.validate."""

    def test_defaults_are_valid(self):
        """Test the defaults validate."""
        cfg = StorageConfig()
        assert cfg.validate().is_ok()
        assert cfg.bucket_size == 1000
        assert cfg.bucket_length == 2
        assert cfg.compressed_bucket_size == 100
        assert cfg.bicriteria_base_size == 2
        assert cfg.forgetting_factor == 1.0
        assert cfg.forgetting_threshold == 0.05

    @pytest.mark.parametrize("field_name,kwargs", [
        ("bucket_size", {"bucket_size": 0}),
        ("bucket_length", {"bucket_length": -1}),
        ("compressed_bucket_size", {"compressed_bucket_size": 0}),
        ("compressed_bucket_size", {"bucket_size": 10, "compressed_bucket_size": 11}),
        ("bicriteria_base_size", {"bicriteria_base_size": 0}),
        ("forgetting_factor", {"forgetting_factor": 0.0}),
        ("forgetting_factor", {"forgetting_factor": 1.5}),
        ("forgetting_threshold", {"forgetting_threshold": -0.1}),
        ("seed", {"seed": -3}),
    ])
    def test_out_of_range_names_field(self, field_name, kwargs):
        """Test each violation reports the offending field."""
        result = StorageConfig(**kwargs).validate()
        assert result.is_err()
        assert isinstance(result.error, InvalidParameter)
        assert result.error.field_name == field_name

    def test_bool_is_not_a_number(self):
        """Test booleans are rejected as integers."""
        result = StorageConfig(bucket_size=True).validate()
        assert result.is_err()
        assert result.error.code == ErrorCode.CONFIG_WRONG_TYPE

    def test_equal_compressed_and_bucket_size_allowed(self):
        """Test equal compressed and bucket sizes are valid."""
        assert StorageConfig(bucket_size=5, compressed_bucket_size=5).validate().is_ok()


class TestLoading:
    """Tests for mapping and environment loading."""

    def test_from_dict_partial(self):
        """Test missing keys take their defaults."""
        cfg = StorageConfig.from_dict({"bucket_size": 50, "forgetting_factor": 1}).unwrap()
        assert cfg.bucket_size == 50
        assert cfg.forgetting_factor == 1.0
        assert isinstance(cfg.forgetting_factor, float)
        assert cfg.bucket_length == 2

    def test_from_dict_compressed_size_follows_small_bucket(self):
        """Test an omitted compressed_bucket_size never exceeds bucket_size."""
        assert StorageConfig.from_dict({"bucket_size": 10}).unwrap().compressed_bucket_size == 10
        assert StorageConfig.from_dict({"bucket_size": 500}).unwrap().compressed_bucket_size == 100
        explicit = StorageConfig.from_dict({"bucket_size": 10, "compressed_bucket_size": 20})
        assert explicit.error.field_name == "compressed_bucket_size"

    def test_from_env_bucket_size_alone(self):
        """Test the environment path applies the same default."""
        cfg = StorageConfig.from_env(environ={"CLUSTERMESH_BUCKET_SIZE": "8"}).unwrap()
        assert cfg.compressed_bucket_size == 8

    def test_from_dict_unknown_key(self):
        """Test unknown keys are rejected by name."""
        result = StorageConfig.from_dict({"bucket_sise": 50})
        assert result.is_err()
        assert result.error.code == ErrorCode.CONFIG_UNKNOWN_FIELD
        assert result.error.field_name == "bucket_sise"

    def test_from_dict_wrong_type(self):
        """Test a wrongly typed value is rejected."""
        result = StorageConfig.from_dict({"bucket_size": "big"})
        assert result.is_err()
        assert result.error.code == ErrorCode.CONFIG_WRONG_TYPE

    def test_from_env(self):
        """Test prefixed environment variables are loaded."""
        env = {
            "CLUSTERMESH_BUCKET_SIZE": "200",
            "CLUSTERMESH_FORGETTING_FACTOR": "0.9",
            "CLUSTERMESH_SEED": "7",
            "UNRELATED": "x",
        }
        cfg = StorageConfig.from_env(environ=env).unwrap()
        assert cfg.bucket_size == 200
        assert cfg.forgetting_factor == pytest.approx(0.9)
        assert cfg.seed == 7

    def test_from_env_bad_number(self):
        """Test an unparsable variable names its field."""
        result = StorageConfig.from_env(environ={"CLUSTERMESH_BUCKET_LENGTH": "two"})
        assert result.is_err()
        assert result.error.field_name == "bucket_length"

    def test_to_dict_round_trip(self):
        """Test to_dict and from_dict are inverses."""
        cfg = StorageConfig(bucket_size=20, compressed_bucket_size=5, seed=3)
        assert StorageConfig.from_dict(cfg.to_dict()).unwrap() == cfg


class TestErrors:
    """Tests for the error taxonomy."""

    def test_dimension_mismatch(self):
        """Test the dimension mismatch error."""
        e = DimensionMismatch.of(3, 2)
        assert e.code == ErrorCode.INPUT_DIMENSION_MISMATCH
        assert e.details == {"expected": 3, "actual": 2}
        assert "expected 3, got 2" in str(e)

    def test_errors_are_exceptions(self):
        """Test errors can be raised."""
        with pytest.raises(UnsupportedMethod):
            raise UnsupportedMethod.of("dbscan")

    def test_to_dict(self):
        """Test error serialization."""
        d = StorageError.corrupted("bad magic header").to_dict()
        assert d["code"] == "STORAGE_CORRUPTED"
        assert d["code_value"] == 4001
        assert d["details"]["reason"] == "bad magic header"

    def test_with_details(self):
        """Test details merge into a copy."""
        e = InvalidParameter.invalid_point("nan").with_details(index=4)
        assert e.details["index"] == 4
        assert e.field_name == "data"
