# Copyright (c) 2026 LidarGrid developers
#
# This file is part of the LidarGrid project.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
#
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Uniform-grid bucket index for neighbour queries on point sets."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator

import numpy as np

from lidargrid._config import config
from lidargrid._dispatch import _check_k, _check_non_negative, _check_positive
from lidargrid._typing import NDArrayInt, NDArrayNum, Number
from lidargrid.exceptions import InsufficientPointsError
from lidargrid.pointset import Point, PointSet


def _default_bucket_size(points: PointSet) -> float:
    """
    Derive a bucket size from the point density, so that buckets hold a few points on average.

    :param points: Point set to index.

    :return: Bucket size, in georeferenced units.
    """
    extent = points.extent
    n = len(points)
    factor = config["bucket_density_factor"]

    if extent is None:
        return 1.0

    area = extent.width * extent.height
    span = max(extent.width, extent.height)
    if area > 0:
        return math.sqrt(area / n) * factor
    elif span > 0:
        return span / n * factor
    return 1.0


class SpatialIndex:
    """
    Spatial index partitioning a point set into square buckets of a uniform grid.

    Every point of the point set belongs to exactly one bucket, keyed by its (col, row) bucket coordinate. The bucket
    size is independent of any output raster resolution. The index is read-only once built, and can be shared between
    concurrent readers.
    """

    def __init__(self, points: PointSet, bucket_size: Number):
        """
        Build the index of a point set.

        :param points: Point set to index.
        :param bucket_size: Side of square buckets, in georeferenced units.
        """

        self._points = points
        self._bucket_size = _check_positive("bucket_size", bucket_size)
        self._buckets: dict[tuple[int, int], NDArrayInt] = {}

        if len(points) == 0:
            self._origin = (0.0, 0.0)
            self._nb_cols, self._nb_rows = 0, 0
            return

        self._origin = (points.extent.xmin, points.extent.ymin)
        cols, rows = self._bucket_coords(points.x, points.y)
        self._nb_cols = int(cols.max()) + 1
        self._nb_rows = int(rows.max()) + 1

        # Group point indices by bucket, keeping input order inside each bucket
        keys = rows * self._nb_cols + cols
        order = np.argsort(keys, kind="stable")
        unique_keys, starts, counts = np.unique(keys[order], return_index=True, return_counts=True)
        for key, start, count in zip(unique_keys, starts, counts):
            key_row, key_col = divmod(int(key), self._nb_cols)
            self._buckets[(key_col, key_row)] = order[start : start + count]

        logging.debug(
            "Spatial index: %d points in %d buckets of size %s (%d x %d).",
            len(points),
            len(self._buckets),
            self._bucket_size,
            self._nb_cols,
            self._nb_rows,
        )

    @classmethod
    def build(cls, points: PointSet, bucket_size: Number | None = None) -> SpatialIndex:
        """
        Build the index of a point set.

        :param points: Point set to index.
        :param bucket_size: Side of square buckets. If not defined, derived from the point density.
        """
        if bucket_size is None:
            bucket_size = _default_bucket_size(points)
            logging.debug("Spatial index: using bucket size %s derived from point density.", bucket_size)
        return cls(points, bucket_size)

    @property
    def points(self) -> PointSet:
        return self._points

    @property
    def bucket_size(self) -> float:
        return self._bucket_size

    @property
    def nb_buckets(self) -> int:
        return len(self._buckets)

    def __len__(self) -> int:
        return len(self._points)

    def _bucket_coords(self, x: NDArrayNum, y: NDArrayNum) -> tuple[NDArrayInt, NDArrayInt]:
        cols = np.floor((np.asarray(x) - self._origin[0]) / self._bucket_size).astype(np.int64)
        rows = np.floor((np.asarray(y) - self._origin[1]) / self._bucket_size).astype(np.int64)
        return cols, rows

    def bucket_of(self, x: Number, y: Number) -> tuple[int, int]:
        """Bucket coordinate (col, row) covering a location (possibly outside the indexed extent)."""
        cols, rows = self._bucket_coords(np.atleast_1d(x), np.atleast_1d(y))
        return int(cols[0]), int(rows[0])

    def iter_buckets(self) -> Iterator[tuple[tuple[int, int], NDArrayInt]]:
        """Yield (bucket coordinate, indices of member points) for all non-empty buckets."""
        yield from self._buckets.items()

    def _ring(self, col: int, row: int, ring: int) -> list[NDArrayInt]:
        """Indices of points in buckets at a Chebyshev distance of exactly 'ring' from a bucket."""
        if ring == 0:
            members = self._buckets.get((col, row))
            return [] if members is None else [members]

        # Only visit the part of the ring intersecting the indexed buckets
        cmin, cmax = max(col - ring, 0), min(col + ring, self._nb_cols - 1)
        rmin, rmax = max(row - ring, 0), min(row + ring, self._nb_rows - 1)
        found = []
        for r in (row - ring, row + ring):
            if 0 <= r < self._nb_rows:
                for c in range(cmin, cmax + 1):
                    if (c, r) in self._buckets:
                        found.append(self._buckets[(c, r)])
        for c in (col - ring, col + ring):
            if 0 <= c < self._nb_cols:
                for r in range(max(rmin, row - ring + 1), min(rmax, row + ring - 1) + 1):
                    if (c, r) in self._buckets:
                        found.append(self._buckets[(c, r)])
        return found

    def _max_ring(self, col: int, row: int) -> int:
        """Ring from a bucket beyond which no indexed bucket exists."""
        return max(abs(col), abs(col - (self._nb_cols - 1)), abs(row), abs(row - (self._nb_rows - 1)))

    def _distances(self, indices: NDArrayInt, x: float, y: float) -> NDArrayNum:
        return np.hypot(self._points.x[indices] - x, self._points.y[indices] - y)

    def radius_indices(self, x: Number, y: Number, radius: Number) -> tuple[NDArrayInt, NDArrayNum]:
        """
        Indices of points within a distance of a location, in input order.

        :param x: X coordinate of the query.
        :param y: Y coordinate of the query.
        :param radius: Search radius (points at exactly this distance are included).

        :return: Point indices and their distances to the query location.
        """
        radius = _check_non_negative("radius", radius)
        if len(self._points) == 0:
            return np.array([], dtype=np.int64), np.array([], dtype=np.float64)

        col, row = self.bucket_of(x, y)
        nb_rings = int(math.ceil(radius / self._bucket_size))
        last_ring = min(nb_rings, self._max_ring(col, row))
        candidates = [members for ring in range(last_ring + 1) for members in self._ring(col, row, ring)]
        if len(candidates) == 0:
            return np.array([], dtype=np.int64), np.array([], dtype=np.float64)

        indices = np.sort(np.concatenate(candidates))
        distances = self._distances(indices, float(x), float(y))
        within = distances <= radius

        return indices[within], distances[within]

    def knn_indices(
        self, x: Number, y: Number, k: int, max_distance: Number | None = None
    ) -> tuple[NDArrayInt, NDArrayNum]:
        """
        Indices of the k nearest points of a location, ordered by ascending distance, ties broken by input order.

        The search expands rings of buckets around the query until at least k candidates are found, then extends to
        the ring covering the k-th candidate distance so that the exact sort of candidates is correct.

        :param x: X coordinate of the query.
        :param y: Y coordinate of the query.
        :param k: Number of neighbours.
        :param max_distance: Maximum distance of neighbours. If not defined, the search spans the full index.

        :raises InsufficientPointsError: If the index is empty.

        :return: Point indices and their distances to the query location (up to k of them).
        """
        k = _check_k(k)
        if len(self._points) == 0:
            raise InsufficientPointsError("Cannot query nearest neighbours: the spatial index is empty.")

        x, y = float(x), float(y)
        col, row = self.bucket_of(x, y)
        max_ring = self._max_ring(col, row)
        if max_distance is not None:
            max_distance = _check_non_negative("max_distance", max_distance)
            max_ring = min(max_ring, int(math.ceil(max_distance / self._bucket_size)))

        # 1/ Expand rings until enough candidates are found
        candidates: list[NDArrayInt] = []
        nb_candidates = 0
        ring = -1
        while nb_candidates < k and ring < max_ring:
            ring += 1
            new = self._ring(col, row, ring)
            candidates.extend(new)
            nb_candidates += sum(len(m) for m in new)

        if nb_candidates == 0:
            return np.array([], dtype=np.int64), np.array([], dtype=np.float64)

        indices = np.concatenate(candidates)
        distances = self._distances(indices, x, y)

        # 2/ Points outside the visited rings are at least ring * bucket_size away: extend to the k-th distance
        if nb_candidates >= k:
            kth_distance = np.partition(distances, k - 1)[k - 1]
            needed_ring = min(int(math.floor(kth_distance / self._bucket_size)) + 1, max_ring)
            if needed_ring > ring:
                extra = [m for r in range(ring + 1, needed_ring + 1) for m in self._ring(col, row, r)]
                if len(extra) > 0:
                    extra_indices = np.concatenate(extra)
                    indices = np.concatenate([indices, extra_indices])
                    distances = np.concatenate([distances, self._distances(extra_indices, x, y)])

        # 3/ Exact sort by distance, then input order
        order = np.lexsort((indices, distances))[:k]
        indices, distances = indices[order], distances[order]

        if max_distance is not None:
            within = distances <= max_distance
            indices, distances = indices[within], distances[within]

        return indices, distances

    def query_radius(self, x: Number, y: Number, radius: Number) -> list[Point]:
        """Points within a distance of a location, in input order."""
        indices, _ = self.radius_indices(x, y, radius)
        return [self._points[int(i)] for i in indices]

    def query_knn(self, x: Number, y: Number, k: int, max_distance: Number | None = None) -> list[tuple[Point, float]]:
        """
        The k nearest points of a location with their distances, ordered by ascending distance (ties broken by input
        order).

        :raises InsufficientPointsError: If the index is empty.
        """
        indices, distances = self.knn_indices(x, y, k, max_distance=max_distance)
        return [(self._points[int(i)], float(d)) for i, d in zip(indices, distances)]
