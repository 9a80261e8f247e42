"""
Core Type Definitions for the Clustering Storage Engine

Implements the Result/Either monad for zero-exception control flow and
the weighted point, the atomic unit every storage variant accumulates.

Design Principles:
- Never use null for absence (use Optional or Result)
- Points are immutable; weights change only by producing a new point
- Equality is value-based on (data, weight) so points can be counted
  as a multiset across nodes
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    Iterable,
    Literal,
    Optional,
    TypeVar,
    Union,
)

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    @property
    def error(self) -> None:
        return None

    def __bool__(self) -> Literal[True]:
        return True

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries the full error value for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    @property
    def value(self) -> None:
        return None

    def __bool__(self) -> Literal[False]:
        return False

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# METHOD ENUMERATIONS
# =============================================================================
class ClusteringMethod(Enum):
    """Clustering model the stored points are fed into."""
    KMEANS = "kmeans"
    GMM = "gmm"

    @classmethod
    def parse(cls, name: str) -> Optional[ClusteringMethod]:
        """Look up by configuration string, None if unknown."""
        for member in cls:
            if member.value == name:
                return member
        return None


class CompressorMethod(Enum):
    """Storage variant: plain retention window or coreset compression."""
    SIMPLE = "simple"
    COMPRESSIVE = "compressive"

    @classmethod
    def parse(cls, name: str) -> Optional[CompressorMethod]:
        """Look up by configuration string, None if unknown."""
        for member in cls:
            if member.value == name:
                return member
        return None


# =============================================================================
# WEIGHTED POINT
# =============================================================================
@dataclass(frozen=True, slots=True)
class WeightedPoint:
    """
    A feature vector with a scalar weight.

    Attributes:
        data: Feature vector (the coordinates clustering sees)
        weight: Non-negative mass of the point
        original: Optional pre-transform representation, carried for
            display and debugging only

    Equality and hashing use (data, weight); `original` is ignored so
    two nodes holding the same observation count it as the same point.
    """
    data: tuple[float, ...]
    weight: float = 1.0
    original: Optional[tuple[float, ...]] = field(default=None, compare=False)

    @classmethod
    def from_values(
        cls,
        data: Union[Iterable[float], "npt.NDArray[np.float64]"],
        weight: float = 1.0,
        original: Optional[Union[Iterable[float], "npt.NDArray[np.float64]"]] = None,
    ) -> WeightedPoint:
        """
        Build a point from any float sequence (list, tuple, numpy array).

        Values are coerced to Python floats so the point hashes and
        serializes the same way regardless of input type.
        """
        coords = tuple(float(v) for v in np.asarray(data, dtype=np.float64).ravel())
        orig = None
        if original is not None:
            orig = tuple(float(v) for v in np.asarray(original, dtype=np.float64).ravel())
        return cls(data=coords, weight=float(weight), original=orig)

    @property
    def dimension(self) -> int:
        return len(self.data)

    def is_finite(self) -> bool:
        """True if every coordinate and the weight are finite numbers."""
        return math.isfinite(self.weight) and all(math.isfinite(v) for v in self.data)

    def as_array(self) -> np.ndarray:
        """Coordinates as a float64 numpy array."""
        return np.asarray(self.data, dtype=np.float64)

    def with_weight(self, weight: float) -> WeightedPoint:
        """Copy of this point carrying a different weight."""
        return WeightedPoint(data=self.data, weight=float(weight), original=self.original)

    def sort_key(self) -> tuple[tuple[float, ...], float]:
        """Canonical ordering key used when point order must not matter."""
        return (self.data, self.weight)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON/API response."""
        result: dict[str, Any] = {
            "data": list(self.data),
            "weight": self.weight,
        }
        if self.original is not None:
            result["original"] = list(self.original)
        return result


def total_weight(points: Iterable[WeightedPoint]) -> float:
    """Sum of weights, using math.fsum to keep rounding error minimal."""
    return math.fsum(p.weight for p in points)
