"""Test module for terrain, surface and canopy height models."""

from __future__ import annotations

import numpy as np
import pytest

from lidargrid import products
from lidargrid.exceptions import DimensionMismatchError, InsufficientPointsError
from lidargrid.grid import Grid, GridGeometry
from lidargrid.pointset import PointSet


def _forest_points(n: int = 500, seed: int = 7) -> PointSet:
    """Flat ground at 10 m with vegetation returns from 5 to 15 m above it."""
    rng = np.random.default_rng(seed)
    x = rng.uniform(0, 20, size=n)
    y = rng.uniform(0, 20, size=n)
    classification = np.where(np.arange(n) % 2 == 0, 2, 5)
    z = np.full(n, 10.0)
    z[classification == 5] += rng.uniform(5, 15, size=np.count_nonzero(classification == 5))
    return PointSet.from_xyz(x, y, z, crs="EPSG:32632", classification=classification)


class TestProducts:
    points = _forest_points()

    def test_terrain_model(self) -> None:
        """Only ground points are interpolated."""

        dtm = products.terrain_model(self.points, resolution=1)
        assert dtm.shape == (20, 20)
        assert dtm.crs == "EPSG:32632"
        assert not np.any(dtm.mask)
        assert np.allclose(dtm.data, 10)

        # All points as ground
        dtm_all = products.terrain_model(self.points, resolution=1, ground_class=None)
        assert np.max(dtm_all.data) > 10

        # Chunked processing, the default buffer covering all points
        dtm_tiled = products.terrain_model(self.points, resolution=1, chunk_size=5)
        assert dtm_tiled.equals(dtm)

        with pytest.raises(InsufficientPointsError, match="ground"):
            products.terrain_model(self.points, resolution=1, ground_class=9)

    def test_surface_model(self) -> None:
        dtm = products.terrain_model(self.points, resolution=1)
        dsm = products.surface_model(self.points, resolution=1)

        assert dsm.geometry == dtm.geometry
        assert not np.any(dsm.mask)
        assert np.all(dsm.data >= 10 - 1e-9)
        assert np.max(dsm.data) == np.max(self.points.z)

        # Without interpolation, empty cells stay no-data
        dsm_sparse = products.surface_model(self.points, resolution=0.25, interpolate_missing=False)
        assert np.any(dsm_sparse.mask)

    def test_normalized_surface_model(self) -> None:
        geometry = GridGeometry(origin=(0, 0), resolution=1, shape=(2, 2))
        dsm = Grid([[5.0, 1.0], [np.nan, 4.0]], geometry)
        dtm = Grid([[2.0, 3.0], [1.0, np.nan]], geometry)

        ndsm = products.normalized_surface_model(dsm, dtm)
        assert np.array_equal(ndsm.data, [[3, -2], [np.nan, np.nan]], equal_nan=True)

        ndsm = products.normalized_surface_model(dsm, dtm, clamp_negative=True)
        assert np.array_equal(ndsm.data, [[3, 0], [np.nan, np.nan]], equal_nan=True)

        other = Grid(np.zeros((2, 3)), GridGeometry(origin=(0, 0), resolution=1, shape=(2, 3)))
        with pytest.raises(DimensionMismatchError, match="same geometry"):
            products.normalized_surface_model(dsm, other)

    def test_canopy_height_model(self) -> None:
        """Canopy heights lie between the ground and the highest vegetation return, on the terrain grid."""

        dtm = products.terrain_model(self.points, resolution=1)
        chm = products.canopy_height_model(self.points, dtm)

        assert chm.geometry == dtm.geometry
        heights = chm.filled()[~chm.mask]
        assert heights.size > 0
        assert np.all(heights >= -1e-9)
        assert np.all(heights <= np.max(self.points.z) - 10 + 1e-9)

        # Vegetation returns raise the canopy above the ground
        assert np.mean(heights) > 2
