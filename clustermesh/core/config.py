"""
Storage Configuration

Provides validated configuration with sensible defaults.
Supports plain-mapping input (the shape a JSON config file decodes to)
and environment variable overrides.

Design:
- Immutable after validation
- Fail-fast on invalid configuration, naming the offending field
- Type-safe with dataclasses
"""

from __future__ import annotations

import dataclasses
import math
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from clustermesh.core import constants as C
from clustermesh.core.errors import InvalidParameter
from clustermesh.core.types import Err, Ok, Result


_INT_FIELDS = (
    "bucket_size",
    "bucket_length",
    "compressed_bucket_size",
    "bicriteria_base_size",
)
_FLOAT_FIELDS = ("forgetting_factor", "forgetting_threshold")


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Bucket, compression and forgetting parameters for one storage.

    Parameters:
        bucket_size: Raw points per bucket before it is compressed
            (simple storage: size of the retention window)
        bucket_length: Maximum number of retained buckets
        compressed_bucket_size: Points in a compressed bucket
        bicriteria_base_size: Temporary centers per output point used by
            the bicriteria seeding step
        forgetting_factor: Per-epoch weight multiplier in (0, 1]
        forgetting_threshold: Buckets at or below this weight are purged
        seed: RNG seed for compression; None draws from OS entropy
    """
    bucket_size: int = C.DEFAULT_BUCKET_SIZE
    bucket_length: int = C.DEFAULT_BUCKET_LENGTH
    compressed_bucket_size: int = C.DEFAULT_COMPRESSED_BUCKET_SIZE
    bicriteria_base_size: int = C.DEFAULT_BICRITERIA_BASE_SIZE
    forgetting_factor: float = C.DEFAULT_FORGETTING_FACTOR
    forgetting_threshold: float = C.DEFAULT_FORGETTING_THRESHOLD
    seed: Optional[int] = None

    def validate(self) -> Result[StorageConfig, InvalidParameter]:
        """
        Check every field against its domain.

        Returns:
            Ok[StorageConfig]: self, unchanged
            Err[InvalidParameter]: first violation, naming the field
        """
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                return Err(InvalidParameter.wrong_type(name, value, "int"))
        for name in _FLOAT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return Err(InvalidParameter.wrong_type(name, value, "float"))
            if not math.isfinite(value):
                return Err(InvalidParameter.out_of_range(name, value, "must be finite"))

        if self.bucket_size <= 0:
            return Err(InvalidParameter.out_of_range(
                "bucket_size", self.bucket_size, "must be > 0"))
        if self.bucket_length <= 0:
            return Err(InvalidParameter.out_of_range(
                "bucket_length", self.bucket_length, "must be > 0"))
        if self.compressed_bucket_size <= 0:
            return Err(InvalidParameter.out_of_range(
                "compressed_bucket_size", self.compressed_bucket_size, "must be > 0"))
        if self.compressed_bucket_size > self.bucket_size:
            return Err(InvalidParameter.out_of_range(
                "compressed_bucket_size", self.compressed_bucket_size,
                f"must be <= bucket_size ({self.bucket_size})"))
        if self.bicriteria_base_size < 1:
            return Err(InvalidParameter.out_of_range(
                "bicriteria_base_size", self.bicriteria_base_size, "must be >= 1"))
        if not (0.0 < self.forgetting_factor <= 1.0):
            return Err(InvalidParameter.out_of_range(
                "forgetting_factor", self.forgetting_factor, "must be in (0, 1]"))
        if self.forgetting_threshold < 0.0:
            return Err(InvalidParameter.out_of_range(
                "forgetting_threshold", self.forgetting_threshold, "must be >= 0"))
        if self.seed is not None:
            if isinstance(self.seed, bool) or not isinstance(self.seed, int):
                return Err(InvalidParameter.wrong_type("seed", self.seed, "int"))
            if self.seed < 0:
                return Err(InvalidParameter.out_of_range("seed", self.seed, "must be >= 0"))
        return Ok(self)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> Result[StorageConfig, InvalidParameter]:
        """
        Build and validate a config from a plain mapping.

        Missing keys take their defaults; unknown keys are rejected so
        typos do not silently fall back to defaults. A missing
        compressed_bucket_size never exceeds the given bucket_size, so
        {"bucket_size": 10} alone is a valid config.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        for key in values:
            if key not in known:
                return Err(InvalidParameter.unknown_field(str(key)))

        kwargs: dict[str, Any] = {}
        for key, value in values.items():
            if key in _FLOAT_FIELDS and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)
            kwargs[key] = value

        size = kwargs.get("bucket_size")
        if ("compressed_bucket_size" not in kwargs and isinstance(size, int)
                and not isinstance(size, bool) and 0 < size < C.DEFAULT_COMPRESSED_BUCKET_SIZE):
            kwargs["compressed_bucket_size"] = size
        return cls(**kwargs).validate()

    @classmethod
    def from_env(
        cls,
        prefix: str = C.ENV_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[StorageConfig, InvalidParameter]:
        """
        Load configuration from environment variables.

        Example: CLUSTERMESH_BUCKET_SIZE=500 CLUSTERMESH_SEED=7
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            raw = env.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            try:
                if f.name in _INT_FIELDS or f.name == "seed":
                    values[f.name] = int(raw)
                else:
                    values[f.name] = float(raw)
            except ValueError:
                expected = "float" if f.name in _FLOAT_FIELDS else "int"
                return Err(InvalidParameter.wrong_type(f.name, raw, expected))
        return cls.from_dict(values)

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping, the inverse of from_dict."""
        return dataclasses.asdict(self)
