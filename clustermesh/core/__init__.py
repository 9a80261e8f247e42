"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the storage engine:
- Result/Either monads for zero-exception control flow
- The weighted point model
- Error taxonomy with stable codes
- Configuration management with validation
"""

from clustermesh.core.types import (
    Result,
    Ok,
    Err,
    WeightedPoint,
    ClusteringMethod,
    CompressorMethod,
    total_weight,
)
from clustermesh.core.errors import (
    ErrorCode,
    ClusteringError,
    InvalidParameter,
    DimensionMismatch,
    UnsupportedMethod,
    StorageError,
    CompressionError,
)
from clustermesh.core.config import StorageConfig

__all__ = [
    "Result",
    "Ok",
    "Err",
    "WeightedPoint",
    "ClusteringMethod",
    "CompressorMethod",
    "total_weight",
    "ErrorCode",
    "ClusteringError",
    "InvalidParameter",
    "DimensionMismatch",
    "UnsupportedMethod",
    "StorageError",
    "CompressionError",
    "StorageConfig",
]
