"""Shared fixtures for the storage test suite."""

from __future__ import annotations

import numpy as np
import pytest

from clustermesh.core.config import StorageConfig
from clustermesh.core.types import WeightedPoint
from clustermesh.observability.metrics import MetricsCollector


def make_points(n: int, dim: int = 2, seed: int = 0, weight: float = 1.0) -> list[WeightedPoint]:
    """n Gaussian points with a fixed seed."""
    rng = np.random.default_rng(seed)
    return [WeightedPoint.from_values(v, weight=weight) for v in rng.normal(size=(n, dim))]


@pytest.fixture
def collector() -> MetricsCollector:
    """Fresh metrics registry, isolated from the process-wide singleton."""
    return MetricsCollector()


@pytest.fixture
def small_config() -> StorageConfig:
    """Ten-point buckets compressed to four, two buckets retained."""
    return StorageConfig(
        bucket_size=10,
        bucket_length=2,
        compressed_bucket_size=4,
        bicriteria_base_size=2,
        forgetting_factor=1.0,
        forgetting_threshold=0.0,
        seed=42,
    )
