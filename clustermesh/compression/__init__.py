"""
Compression module: distance kernels and the bicriteria coreset compressor.
"""

from clustermesh.compression.distance import (
    DistanceMetric,
    l2_distance_squared_batch,
    pairwise_l2_squared,
    unit_scale,
    weighted_scale,
)
from clustermesh.compression.compressor import CoresetCompressor, compressor_for

__all__ = [
    "DistanceMetric",
    "l2_distance_squared_batch",
    "pairwise_l2_squared",
    "unit_scale",
    "weighted_scale",
    "CoresetCompressor",
    "compressor_for",
]
