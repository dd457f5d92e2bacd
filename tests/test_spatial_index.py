"""Test module for the spatial bucket index."""

from __future__ import annotations

import numpy as np
import pytest

from lidargrid.exceptions import InsufficientPointsError, InvalidParameterError
from lidargrid.pointset import PointSet
from lidargrid.spatial_index import SpatialIndex


class TestSpatialIndex:
    rng = np.random.default_rng(42)
    points = PointSet.from_xyz(
        x=rng.uniform(0, 100, size=500), y=rng.uniform(0, 50, size=500), z=rng.normal(size=500)
    )

    def test_build(self) -> None:
        """Every point belongs to exactly one bucket."""

        index = SpatialIndex.build(self.points, bucket_size=7.5)
        assert index.bucket_size == 7.5
        assert len(index) == 500

        members = np.concatenate([m for _, m in index.iter_buckets()])
        assert np.array_equal(np.sort(members), np.arange(500))

        # Bucket of each point matches its coordinates
        for (col, row), m in index.iter_buckets():
            for i in m:
                assert index.bucket_of(self.points.x[i], self.points.y[i]) == (col, row)

    def test_build__default_bucket_size(self) -> None:
        index = SpatialIndex.build(self.points)
        assert index.bucket_size > 0
        assert index.nb_buckets > 1

        # Aligned or single points
        assert SpatialIndex.build(PointSet.from_xyz([0, 10], [0, 0], [1, 2])).bucket_size > 0
        assert SpatialIndex.build(PointSet.from_xyz([3], [3], [1])).bucket_size > 0

        with pytest.raises(InvalidParameterError, match="bucket_size"):
            SpatialIndex.build(self.points, bucket_size=0)

    @pytest.mark.parametrize("bucket_size", [0.5, 3, 20, 200])  # type: ignore
    @pytest.mark.parametrize("k", [1, 5, 30])  # type: ignore
    def test_query_knn(self, bucket_size: float, k: int) -> None:
        """Nearest neighbours match a brute force search, whatever the bucket size."""

        index = SpatialIndex.build(self.points, bucket_size=bucket_size)

        for x, y in [(50, 25), (0, 0), (99.9, 10), (-20, 70)]:
            indices, distances = index.knn_indices(x, y, k)
            dist_brute = np.hypot(self.points.x - x, self.points.y - y)
            order = np.lexsort((np.arange(500), dist_brute))[:k]

            assert np.array_equal(indices, order)
            assert np.allclose(distances, dist_brute[order])

            knn = index.query_knn(x, y, k)
            assert len(knn) == k
            assert [d for _, d in knn] == sorted(d for _, d in knn)

    def test_query_knn__ties(self) -> None:
        """Ties in distance are broken by input order."""

        points = PointSet.from_xyz([1, -1, 0, 0, 0], [0, 0, 1, -1, 0], [1, 2, 3, 4, 5])
        index = SpatialIndex.build(points, bucket_size=0.5)

        indices, distances = index.knn_indices(0, 0, 3)
        assert indices.tolist() == [4, 0, 1]
        assert distances.tolist() == [0, 1, 1]

        # Fewer points than k
        indices, _ = index.knn_indices(0, 0, 10)
        assert indices.tolist() == [4, 0, 1, 2, 3]

        # Bounded search
        indices, _ = index.knn_indices(5, 0, 3, max_distance=4.5)
        assert indices.tolist() == [0]

    def test_query_knn__errors(self) -> None:
        with pytest.raises(InsufficientPointsError):
            SpatialIndex.build(PointSet.empty()).query_knn(0, 0, 3)
        with pytest.raises(InvalidParameterError, match="'k'"):
            SpatialIndex.build(self.points).query_knn(0, 0, 0)

    def test_query_radius(self) -> None:
        """Points within the radius, border included, in input order."""

        index = SpatialIndex.build(self.points, bucket_size=4)
        for x, y, radius in [(50, 25, 10), (0, 0, 5), (30, 30, 0.1), (-100, 0, 5)]:
            found = index.query_radius(x, y, radius)
            indices, _ = index.radius_indices(x, y, radius)
            expected = np.flatnonzero(np.hypot(self.points.x - x, self.points.y - y) <= radius)

            assert np.array_equal(indices, expected)
            assert [p.z for p in found] == self.points.z[expected].tolist()

        points = PointSet.from_xyz([0, 3, 4], [0, 4, 0], [1, 2, 3])
        assert [p.z for p in SpatialIndex.build(points).query_radius(0, 0, 5)] == [1, 2, 3]
        assert len(SpatialIndex.build(PointSet.empty()).query_radius(0, 0, 5)) == 0
