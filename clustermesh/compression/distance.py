"""
Distance Kernels for Coreset Compression

Provides vectorized distance computations over point matrices:
    - Squared L2 (Euclidean) distance, query against a batch
    - Pairwise squared L2 distance matrix
    - Per-dimension standardisation for Gaussian-mixture storage
    - Power-of-two rescaling that keeps squared distances finite

Optimizations:
    - NumPy broadcasting for batch operations
    - ||a-b||² = ||a||² + ||b||² - 2(a·b) expansion for matrices

All kernels work in float64: compressed weights and centroids are
stored and serialized at full precision.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Union

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

# Type alias for vector input
VectorLike = Union[np.ndarray, list[float], tuple[float, ...], "npt.NDArray[np.float64]"]


class DistanceMetric(Enum):
    """Geometry the compressor merges clusters under."""
    SQUARED_L2 = "squared_l2"            # k-means cost
    STANDARDIZED_L2 = "standardized_l2"  # diagonal-covariance scaled (GMM)


# =============================================================================
# L2 (EUCLIDEAN) DISTANCE
# =============================================================================
def l2_distance_squared_batch(
    query: VectorLike,
    vectors: VectorLike,
) -> np.ndarray:
    """
    Compute squared L2 distance between query and batch of vectors.

    Args:
        query: Query vector (1D, shape [d])
        vectors: Candidate vectors (2D, shape [n, d])

    Returns:
        Squared distances (1D, shape [n])
    """
    query = np.asarray(query, dtype=np.float64)
    vectors = np.asarray(vectors, dtype=np.float64)
    diff = vectors - query
    return np.einsum("ij,ij->i", diff, diff)


def pairwise_l2_squared(vectors: VectorLike) -> np.ndarray:
    """
    Squared L2 distance between every pair of rows.

    Args:
        vectors: Matrix (2D, shape [n, d])

    Returns:
        Symmetric matrix (shape [n, n]) with a zero diagonal

    Complexity: O(n² × d)
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    sq = np.sum(vectors * vectors, axis=1)
    dist = sq[:, None] + sq[None, :] - 2.0 * (vectors @ vectors.T)
    dist = np.maximum(dist, 0.0)  # Numerical stability
    np.fill_diagonal(dist, 0.0)
    return dist


# =============================================================================
# STANDARDISATION
# =============================================================================
def weighted_scale(vectors: VectorLike, weights: VectorLike) -> np.ndarray:
    """
    Per-dimension weighted standard deviation, with zeros replaced by 1.

    Dividing coordinates by this scale makes squared L2 distance a
    diagonal Mahalanobis distance under the bucket's own spread.
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    total = float(np.sum(weights))
    if vectors.size == 0 or total <= 0.0:
        return np.ones(vectors.shape[1] if vectors.ndim == 2 else 0)
    share = weights / total
    mean = share @ vectors
    var = share @ ((vectors - mean) ** 2)
    std = np.sqrt(var)
    return np.where(std > 0.0, std, 1.0)


def prepare_geometry(
    metric: DistanceMetric,
    vectors: VectorLike,
    weights: VectorLike,
) -> np.ndarray:
    """
    Map raw coordinates into the space the metric measures squared L2 in.

    Centroids are always computed on the raw coordinates; only the
    distances used to choose seeds and merges are taken here.

    Both geometries are brought to a unit box by unit_scale, so squared
    distances stay finite for any finite input. The rescaling is by a
    power of two and leaves distance ratios exact.
    """
    geometry = unit_scale(vectors)
    if metric == DistanceMetric.STANDARDIZED_L2:
        geometry = unit_scale(geometry / weighted_scale(geometry, weights))
    return geometry


# =============================================================================
# RESCALING
# =============================================================================
def unit_scale(vectors: VectorLike) -> np.ndarray:
    """
    Divide by the power of two just above the largest magnitude.

    Every coordinate of the result lies in (-1, 1), which bounds a
    squared distance by 4 per dimension.
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    if vectors.size == 0:
        return vectors
    peak = float(np.max(np.abs(vectors)))
    if peak == 0.0 or not np.isfinite(peak):
        return vectors
    _, exponent = np.frexp(peak)
    return np.ldexp(vectors, -int(exponent))
