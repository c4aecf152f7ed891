"""Tests for deterministic k-means."""
import pytest

from opinionmap.shared.errors import ValidationError
from opinionmap.services.analytics_service.clustering import assign_clusters, kmeans
from opinionmap.services.analytics_service.embedding import EmbeddingPoint


class TestKmeans:
    """Tests for cluster assignment."""

    def test_empty(self):
        assert kmeans([], k=3) == []

    def test_fewer_points_than_clusters(self):
        assert kmeans([(0, 0), (5, 5)], k=5) == [0, 1]

    def test_points_equal_to_k(self):
        assert kmeans([(0, 0), (1, 1), (2, 2)], k=3) == [0, 1, 2]

    def test_two_obvious_groups(self):
        points = [(0, 0), (10, 10), (0.1, 0.2), (10.2, 9.9), (-0.1, 0.1), (9.8, 10.1)]

        assert kmeans(points, k=2) == [0, 1, 0, 1, 0, 1]

    def test_first_pass_matching_zeros_stops(self):
        # Duplicate seeds: the first centroid wins every tie, nothing moves
        assert kmeans([(0, 0), (0, 0), (10, 0)], k=2) == [0, 0, 0]

    def test_empty_cluster_keeps_centroid(self):
        # Seed 1 duplicates seed 0 and gets no members on the first pass
        points = [(0, 0), (0, 0), (10, 0), (10, 0), (5, 0)]

        assert kmeans(points, k=3) == [1, 1, 2, 2, 0]

    def test_deterministic(self):
        points = [(i * 0.7 % 3, i * 1.3 % 5) for i in range(20)]
        assert kmeans(points, k=4) == kmeans(points, k=4)

    def test_indices_in_range(self):
        points = [(i * 0.7 % 3, i * 1.3 % 5) for i in range(20)]
        assert set(kmeans(points, k=4)) <= set(range(4))

    def test_single_iteration_cap(self):
        result = kmeans([(0, 0), (1, 0), (5, 0), (6, 0)], k=2, max_iterations=1)
        assert len(result) == 4

    def test_invalid_k(self):
        with pytest.raises(ValidationError):
            kmeans([(0, 0)], k=0)

    def test_invalid_iterations(self):
        with pytest.raises(ValidationError):
            kmeans([(0, 0)], k=1, max_iterations=0)


class TestAssignClusters:
    """Tests for point annotation."""

    def test_fills_cluster_and_keeps_coordinates(self):
        points = [
            EmbeddingPoint("P01", 0.0, 0.0),
            EmbeddingPoint("P02", 10.0, 10.0),
            EmbeddingPoint("P03", 0.2, 0.1),
        ]

        clustered = assign_clusters(points, k=2)

        assert [p.cluster for p in clustered] == [0, 1, 0]
        assert [(p.label, p.x, p.y) for p in clustered] == [
            ("P01", 0.0, 0.0), ("P02", 10.0, 10.0), ("P03", 0.2, 0.1),
        ]
        assert all(p.cluster == 0 for p in points)
