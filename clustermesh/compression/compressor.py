"""
Bicriteria Coreset Compressor

Reduces a full raw bucket to a small weighted summary whose clustering
cost approximates that of the original points.

Algorithm:
    1. Bicriteria seeding: draw m = base_size × target seed points by
       D²-sampling (k-means++ style, proportional to weight × squared
       distance to the nearest seed already drawn)
    2. Assignment: every point joins its nearest seed, giving at most m
       temporary clusters
    3. Reduction: repeatedly merge the pair of clusters with the smallest
       Ward cost  wᵢwⱼ/(wᵢ+wⱼ) · d(cᵢ, cⱼ)  until target clusters remain;
       ties go to the lexicographically smallest (i, j) pair
    4. Each cluster becomes one point: weighted centroid, summed weight

Guarantees:
    - Output size <= target size
    - Output total weight == input total weight (only geometry is lost)
    - Deterministic for a given input order and RNG state

Complexity: O(n·m·d) seeding and assignment + O(m²·d) reduction
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from clustermesh.compression.distance import (
    DistanceMetric,
    l2_distance_squared_batch,
    pairwise_l2_squared,
    prepare_geometry,
)
from clustermesh.core.types import ClusteringMethod, WeightedPoint

logger = logging.getLogger(__name__)


class CoresetCompressor:
    """
    Weight-conserving merge-and-reduce compressor.

    The compressor holds no random state of its own: the caller passes
    the generator it owns, so a storage with a fixed seed compresses the
    same bucket the same way on every node.

    Usage:
        compressor = CoresetCompressor(DistanceMetric.SQUARED_L2)
        summary = compressor.compress(points, target_size=4, base_size=2, rng=rng)
    """

    __slots__ = ("_metric",)

    def __init__(self, metric: DistanceMetric = DistanceMetric.SQUARED_L2) -> None:
        self._metric = metric

    @property
    def metric(self) -> DistanceMetric:
        return self._metric

    def compress(
        self,
        points: Sequence[WeightedPoint],
        target_size: int,
        base_size: int,
        rng: np.random.Generator,
    ) -> list[WeightedPoint]:
        """
        Compress points to at most target_size weighted centroids.

        Args:
            points: Points of one raw bucket, all of the same dimension
            target_size: Maximum number of output points (>= 1)
            base_size: Temporary centers per output point (>= 1)
            rng: Generator used for seed selection

        Returns:
            Newly synthesized points with `original` unset
        """
        n = len(points)
        if n == 0:
            return []
        if n <= target_size:
            return [WeightedPoint(data=p.data, weight=p.weight) for p in points]

        raw = np.array([p.data for p in points], dtype=np.float64)
        weights = np.array([p.weight for p in points], dtype=np.float64)
        geometry = prepare_geometry(self._metric, raw, weights)

        seeds = self._select_seeds(geometry, weights, min(n, base_size * target_size), rng)
        centroids, geo_centroids, masses = self._assign(raw, geometry, weights, seeds)
        centroids, masses = self._reduce(centroids, geo_centroids, masses, target_size)

        logger.debug(
            f"Compressed {n} points to {len(masses)} "
            f"(seeds={len(seeds)}, metric={self._metric.value})"
        )
        return [
            WeightedPoint(data=tuple(c.tolist()), weight=float(w))
            for c, w in zip(centroids, masses)
        ]

    # =========================================================================
    # BICRITERIA SEEDING
    # =========================================================================
    def _select_seeds(
        self,
        geometry: np.ndarray,
        weights: np.ndarray,
        count: int,
        rng: np.random.Generator,
    ) -> list[int]:
        """D²-sampling of up to `count` distinct seed indices."""
        n = geometry.shape[0]
        first = int(rng.choice(n, p=_distribution(weights)))
        seeds = [first]
        nearest = l2_distance_squared_batch(geometry[first], geometry)

        while len(seeds) < count:
            scores = weights * nearest
            if float(np.sum(scores)) <= 0.0:
                # Only zero-weight or coincident points remain; fall back
                # to any point not yet covered by a seed.
                scores = (nearest > 0.0).astype(np.float64)
                if float(np.sum(scores)) <= 0.0:
                    break
            idx = int(rng.choice(n, p=_distribution(scores)))
            seeds.append(idx)
            nearest = np.minimum(nearest, l2_distance_squared_batch(geometry[idx], geometry))
        return seeds

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================
    @staticmethod
    def _assign(
        raw: np.ndarray,
        geometry: np.ndarray,
        weights: np.ndarray,
        seeds: list[int],
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Group points by nearest seed (lowest seed index wins ties)."""
        dist = np.stack([l2_distance_squared_batch(geometry[s], geometry) for s in seeds])
        owner = np.argmin(dist, axis=0)

        centroids: list[np.ndarray] = []
        geo_centroids: list[np.ndarray] = []
        masses: list[float] = []
        for k in range(len(seeds)):
            members = owner == k
            if not np.any(members):
                continue
            w = weights[members]
            mass = float(np.sum(w))
            centroids.append(_centroid(raw[members], w, mass))
            geo_centroids.append(_centroid(geometry[members], w, mass))
            masses.append(mass)
        return np.array(centroids), np.array(geo_centroids), np.array(masses)

    # =========================================================================
    # AGGLOMERATIVE REDUCTION
    # =========================================================================
    @staticmethod
    def _reduce(
        centroids: np.ndarray,
        geo_centroids: np.ndarray,
        masses: np.ndarray,
        target_size: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Merge least-separated clusters until target_size remain."""
        if len(masses) <= target_size:
            return centroids, masses

        cost = _ward_cost(pairwise_l2_squared(geo_centroids), masses)
        while len(masses) > target_size:
            flat = int(np.argmin(cost))
            i, j = divmod(flat, cost.shape[1])
            i, j = min(i, j), max(i, j)

            wi, wj = masses[i], masses[j]
            total = wi + wj
            if total > 0.0:
                a, b = wi / total, wj / total
                centroids[i] = a * centroids[i] + b * centroids[j]
                geo_centroids[i] = a * geo_centroids[i] + b * geo_centroids[j]
            else:
                centroids[i] = 0.5 * centroids[i] + 0.5 * centroids[j]
                geo_centroids[i] = 0.5 * geo_centroids[i] + 0.5 * geo_centroids[j]
            masses[i] = total

            centroids = np.delete(centroids, j, axis=0)
            geo_centroids = np.delete(geo_centroids, j, axis=0)
            masses = np.delete(masses, j)
            cost = np.delete(np.delete(cost, j, axis=0), j, axis=1)

            row = _ward_row(geo_centroids, masses, i)
            cost[i, :] = row
            cost[:, i] = row
        return centroids, masses


# =============================================================================
# HELPERS
# =============================================================================
def compressor_for(method: ClusteringMethod) -> CoresetCompressor:
    """Compressor whose merge geometry suits the given clustering method."""
    if method == ClusteringMethod.GMM:
        return CoresetCompressor(DistanceMetric.STANDARDIZED_L2)
    return CoresetCompressor(DistanceMetric.SQUARED_L2)


def _distribution(scores: np.ndarray) -> np.ndarray:
    """
    Normalize non-negative scores to probabilities.

    All-zero scores give the uniform distribution. Scores whose sum
    overflows are rescaled by their peak first; infinite scores share
    the whole mass equally.
    """
    scores = np.nan_to_num(scores, nan=0.0, posinf=np.inf)
    total = float(np.sum(scores))
    if not np.isfinite(total):
        peak = float(np.max(scores))
        scores = np.isinf(scores).astype(np.float64) if np.isinf(peak) else scores / peak
        total = float(np.sum(scores))
    if total <= 0.0:
        return np.full(scores.shape[0], 1.0 / scores.shape[0])
    return scores / total


def _centroid(vectors: np.ndarray, weights: np.ndarray, mass: float) -> np.ndarray:
    if mass > 0.0:
        return (weights / mass) @ vectors
    return (vectors / len(vectors)).sum(axis=0)


def _ward_cost(dist: np.ndarray, masses: np.ndarray) -> np.ndarray:
    """Full Ward cost matrix with +inf on the diagonal."""
    pair_mass = masses[:, None] + masses[None, :]
    with np.errstate(divide="ignore", invalid="ignore"):
        factor = np.where(pair_mass > 0.0, masses[:, None] * (masses[None, :] / pair_mass), 0.0)
    cost = factor * dist
    np.fill_diagonal(cost, np.inf)
    return cost


def _ward_row(geo_centroids: np.ndarray, masses: np.ndarray, i: int) -> np.ndarray:
    """Ward cost between cluster i and every cluster."""
    dist = l2_distance_squared_batch(geo_centroids[i], geo_centroids)
    pair_mass = masses[i] + masses
    with np.errstate(divide="ignore", invalid="ignore"):
        factor = np.where(pair_mass > 0.0, masses[i] * (masses / pair_mass), 0.0)
    row = factor * dist
    row[i] = np.inf
    return row
