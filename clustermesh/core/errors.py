"""
Error Hierarchy for the Clustering Storage Engine

Design Principles:
- Operation boundaries return Result values carrying these errors
- Construction-time failures are raised (the instance never exists)
- Every error carries a stable code, a message and structured details

A stale diff is not an error: `put_diff` reports it as a plain False,
since out-of-order synchronization is a normal condition between nodes.

Usage:
    result = storage.add(point)
    match result:
        case Ok(revision):
            ...
        case Err(DimensionMismatch() as e):
            log.warning(e.message)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by concern:
    - 1xxx: Configuration errors
    - 2xxx: Input errors
    - 3xxx: Factory errors
    - 4xxx: Storage (serialization) errors
    - 5xxx: Compression errors
    """

    # Configuration errors (1xxx)
    CONFIG_OUT_OF_RANGE = 1001
    CONFIG_UNKNOWN_FIELD = 1002
    CONFIG_WRONG_TYPE = 1003

    # Input errors (2xxx)
    INPUT_DIMENSION_MISMATCH = 2001
    INPUT_INVALID_POINT = 2002

    # Factory errors (3xxx)
    FACTORY_UNSUPPORTED_METHOD = 3001

    # Storage errors (4xxx)
    STORAGE_CORRUPTED = 4001
    STORAGE_INCOMPATIBLE = 4002

    # Compression errors (5xxx)
    COMPRESSION_FAILED = 5001


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class ClusteringError(Exception):
    """
    Base class for all clustering storage errors.

    Usable both as a raised exception (construction) and as the payload
    of an Err result (runtime operations).
    """

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def with_details(self, **kwargs: Any) -> ClusteringError:
        """Copy of this error with extra details merged in."""
        return dataclasses.replace(self, details={**self.details, **kwargs})

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for logging/API responses."""
        return {
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================
@dataclass
class InvalidParameter(ClusteringError):
    """A configuration or input value is outside its valid domain."""

    @property
    def field_name(self) -> str:
        return str(self.details.get("field", ""))

    @classmethod
    def out_of_range(cls, field_name: str, value: Any, reason: str) -> InvalidParameter:
        return cls(
            code=ErrorCode.CONFIG_OUT_OF_RANGE,
            message=f"Invalid parameter '{field_name}': {reason}",
            details={"field": field_name, "value": repr(value)[:100], "reason": reason},
        )

    @classmethod
    def unknown_field(cls, field_name: str) -> InvalidParameter:
        return cls(
            code=ErrorCode.CONFIG_UNKNOWN_FIELD,
            message=f"Unknown parameter '{field_name}'",
            details={"field": field_name},
        )

    @classmethod
    def wrong_type(cls, field_name: str, value: Any, expected: str) -> InvalidParameter:
        return cls(
            code=ErrorCode.CONFIG_WRONG_TYPE,
            message=f"Invalid parameter '{field_name}': expected {expected}, "
                    f"got {type(value).__name__}",
            details={"field": field_name, "value": repr(value)[:100], "expected": expected},
        )

    @classmethod
    def invalid_point(cls, reason: str) -> InvalidParameter:
        return cls(
            code=ErrorCode.INPUT_INVALID_POINT,
            message=f"Invalid parameter 'data': {reason}",
            details={"field": "data", "reason": reason},
        )


# =============================================================================
# INPUT ERRORS
# =============================================================================
@dataclass
class DimensionMismatch(ClusteringError):
    """Point length differs from the dimensionality fixed by the first add."""

    @classmethod
    def of(cls, expected: int, actual: int) -> DimensionMismatch:
        return cls(
            code=ErrorCode.INPUT_DIMENSION_MISMATCH,
            message=f"Dimension mismatch: expected {expected}, got {actual}",
            details={"expected": expected, "actual": actual},
        )


# =============================================================================
# FACTORY ERRORS
# =============================================================================
@dataclass
class UnsupportedMethod(ClusteringError):
    """Unknown clustering method or compressor name."""

    @classmethod
    def of(cls, name: str) -> UnsupportedMethod:
        return cls(
            code=ErrorCode.FACTORY_UNSUPPORTED_METHOD,
            message=f"Unsupported method '{name}'",
            details={"method": name},
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(ClusteringError):
    """Failure to restore a storage from its packed form."""

    @classmethod
    def corrupted(cls, reason: str) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_CORRUPTED,
            message=f"Packed storage is corrupted: {reason}",
            details={"reason": reason},
        )

    @classmethod
    def incompatible(cls, reason: str) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_INCOMPATIBLE,
            message=f"Packed storage is incompatible: {reason}",
            details={"reason": reason},
        )


# =============================================================================
# COMPRESSION ERRORS
# =============================================================================
@dataclass
class CompressionError(ClusteringError):
    """A full bucket could not be summarised; the triggering add is undone."""

    @classmethod
    def failed(cls, epoch: int, size: int, reason: str) -> CompressionError:
        return cls(
            code=ErrorCode.COMPRESSION_FAILED,
            message=f"Compression of epoch {epoch} ({size} points) failed: {reason}",
            details={"epoch": epoch, "size": size, "reason": reason},
        )
