"""
Input validation shared by both storage variants.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Union

from clustermesh.core.errors import ClusteringError, DimensionMismatch, InvalidParameter
from clustermesh.core.types import Err, Ok, Result, WeightedPoint

PointLike = Union[WeightedPoint, Iterable[float], Any]


def validate_point(
    point: PointLike,
    dimension: Optional[int],
) -> Result[WeightedPoint, ClusteringError]:
    """
    Coerce input to a WeightedPoint and check it against the storage.

    Args:
        point: A WeightedPoint, or any float sequence (weight 1.0)
        dimension: Dimensionality fixed by the first point, None if empty

    Returns:
        Ok[WeightedPoint] or Err with DimensionMismatch / InvalidParameter
    """
    if not isinstance(point, WeightedPoint):
        try:
            point = WeightedPoint.from_values(point)
        except (TypeError, ValueError) as e:
            return Err(InvalidParameter.invalid_point(f"not a numeric vector ({e})"))

    if point.dimension == 0:
        return Err(InvalidParameter.invalid_point("empty vector"))
    if dimension is not None and point.dimension != dimension:
        return Err(DimensionMismatch.of(dimension, point.dimension))
    if not point.is_finite():
        return Err(InvalidParameter.invalid_point("non-finite coordinate or weight"))
    if point.weight < 0.0:
        return Err(InvalidParameter.invalid_point(f"negative weight {point.weight}"))
    return Ok(point)


def validate_sequence(
    points: Iterable[WeightedPoint],
    dimension: Optional[int],
) -> Result[Optional[int], ClusteringError]:
    """Validate points in order, fixing the dimension from the first if unset."""
    for point in points:
        checked = validate_point(point, dimension)
        if checked.is_err():
            return checked
        dimension = checked.unwrap().dimension
    return Ok(dimension)
