"""Cluster assignment over embedded points.

Lloyd's k-means with deterministic seeding: the first k points, in
input order, are the initial centroids. The same point order always
yields the same grouping. Known limitation: quality depends on that
order and is worse than random multi-start seeding; the grouping is
illustrative, not a statistical result.
"""
import logging
from dataclasses import replace
from typing import List, Sequence, Tuple

import numpy as np

from opinionmap.shared.errors import ValidationError
from .embedding import EmbeddingPoint

logger = logging.getLogger(__name__)

DEFAULT_K = 5
DEFAULT_MAX_ITERATIONS = 50


def assign_to_nearest(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Index of the nearest centroid per point (squared Euclidean).

    argmin keeps the first centroid on ties.
    """
    deltas = points[:, np.newaxis, :] - centroids[np.newaxis, :, :]
    distances = np.einsum("ijk,ijk->ij", deltas, deltas)
    return np.argmin(distances, axis=1)


def kmeans(
    points: Sequence[Tuple[float, float]],
    k: int = DEFAULT_K,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[int]:
    """Assign each point a cluster index in [0, min(k, N)).

    Args:
        points: (x, y) pairs in a fixed order
        k: Requested cluster count, capped at the number of points
        max_iterations: Upper bound on refinement rounds

    Returns:
        Cluster index per point, in input order

    Raises:
        ValidationError: If k or max_iterations is not positive
    """
    if k < 1:
        raise ValidationError(f"k must be positive, got {k}")
    if max_iterations < 1:
        raise ValidationError(f"max_iterations must be positive, got {max_iterations}")

    n_points = len(points)
    if n_points == 0:
        return []
    if n_points <= k:
        # Every point is its own cluster
        return list(range(n_points))

    coords = np.asarray(points, dtype=float).reshape(n_points, 2)
    centroids = coords[:k].copy()
    # Starts all-zero; a first pass that matches it stops before any update
    assignments = np.zeros(n_points, dtype=int)
    iterations = 0

    for iterations in range(1, max_iterations + 1):
        new_assignments = assign_to_nearest(coords, centroids)
        if np.array_equal(new_assignments, assignments):
            break
        assignments = new_assignments

        for c in range(k):
            members = coords[assignments == c]
            if len(members) == 0:
                continue  # empty cluster keeps its centroid
            centroids[c] = members.mean(axis=0)

    logger.debug(
        "KMEANS_COMPLETED",
        extra={"n_points": n_points, "k": k, "iterations": iterations}
    )
    return [int(a) for a in assignments]


def assign_clusters(
    points: Sequence[EmbeddingPoint],
    k: int = DEFAULT_K,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[EmbeddingPoint]:
    """Copy of the embedded points with their cluster index filled in."""
    clusters = kmeans([(p.x, p.y) for p in points], k=k, max_iterations=max_iterations)
    return [replace(p, cluster=c) for p, c in zip(points, clusters)]
