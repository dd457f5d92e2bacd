"""Test module for the rasterization of point sets and its reducers."""

from __future__ import annotations

import numpy as np
import pytest

from lidargrid import reducers
from lidargrid.exceptions import InsufficientPointsError, InvalidParameterError
from lidargrid.grid import GridGeometry
from lidargrid.pointset import PointSet
from lidargrid.rasterize import rasterize, rasterize_on_grid


def _cell_points(values: list[float], x0: float = 0.5, y0: float = 0.5) -> PointSet:
    """Points all falling in the same cell."""
    n = len(values)
    return PointSet.from_xyz(np.full(n, x0), np.full(n, y0), values)


class TestReducers:
    values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]

    def test_mean_stddev(self) -> None:
        """Exact mean and population standard deviation of a cell."""

        points = _cell_points(self.values)
        mean = rasterize(points, resolution=1, extent=(0, 0, 1, 1), reducer="mean")
        std = rasterize(points, resolution=1, extent=(0, 0, 1, 1), reducer="stddev")

        assert mean[0, 0] == pytest.approx(5.0)
        assert std[0, 0] == pytest.approx(2.0)

        # Sample standard deviation
        std_sample = rasterize(points, resolution=1, extent=(0, 0, 1, 1), reducer=reducers.StdDev(ddof=1))
        assert std_sample[0, 0] == pytest.approx(np.std(self.values, ddof=1))

    def test_stddev__one_point(self) -> None:
        """A cell with a single point has a standard deviation of 0."""
        points = _cell_points([3.0])
        assert rasterize(points, resolution=1, extent=(0, 0, 1, 1), reducer="stddev")[0, 0] == 0
        assert rasterize(points, resolution=1, extent=(0, 0, 1, 1), reducer=reducers.StdDev(ddof=1))[0, 0] == 0

    @pytest.mark.parametrize(
        "reducer, expected",
        [
            ("count", 8),
            ("min", 2),
            ("max", 9),
            (np.median, 4.5),
            (reducers.Custom(func=np.ptp), 7),
        ],
    )  # type: ignore
    def test_cell_reducers(self, reducer: str | reducers.Reducer, expected: float) -> None:
        points = _cell_points(self.values)
        grid = rasterize(points, resolution=1, extent=(0, 0, 2, 1), reducer=reducer)

        assert grid[0, 0] == expected
        # Empty cell
        assert np.isnan(grid[1, 0])

    def test_reducer_attribute(self) -> None:
        points = PointSet.from_xyz([0.5, 0.5], [0.5, 0.5], [1, 2], intensity=[100, 300])
        grid = rasterize(points, resolution=1, extent=(0, 0, 1, 1), reducer=reducers.Mean(attribute="intensity"))
        assert grid[0, 0] == 200

    def test_get_reducer(self) -> None:
        assert reducers.get_reducer("mean") == reducers.Mean()
        assert reducers.get_reducer("STDDEV", ddof=1) == reducers.StdDev(ddof=1)
        assert reducers.get_reducer("pitfree").thresholds == (0, 2, 5, 10, 15)
        assert isinstance(reducers.get_reducer(np.median), reducers.Custom)

        with pytest.raises(InvalidParameterError, match="Unknown reducer name"):
            reducers.get_reducer("mode")
        with pytest.raises(InvalidParameterError, match="'ddof'"):
            reducers.StdDev(ddof=-1)
        with pytest.raises(InvalidParameterError, match="'thresholds'"):
            reducers.PitFree(thresholds=[5, 2])
        with pytest.raises(InvalidParameterError, match="'k'"):
            reducers.Interpolated(k=0)


class TestRasterize:
    def test_end_to_end(self) -> None:
        """One point per cell: the mean is the point value."""

        points = PointSet.from_xyz([0, 1, 0, 1], [0, 0, 1, 1], [10, 12, 14, 16], crs="EPSG:32632")
        grid = rasterize(points, resolution=1, extent=(0, 0, 2, 2), reducer="mean")

        assert grid.shape == (2, 2)
        assert grid.crs == "EPSG:32632"
        assert grid[0, 0] == 10
        assert grid[1, 0] == 12
        assert grid[0, 1] == 14
        assert grid[1, 1] == 16

    def test_default_extent(self) -> None:
        """Without extent, the grid covers the point set and points on its maximum edge fall in the last cells."""

        points = PointSet.from_xyz([0, 2, 0, 2], [0, 0, 1, 1], [1, 2, 3, 4])
        grid = rasterize(points, resolution=1, reducer="count")

        assert grid.shape == (1, 2)
        assert grid[0, 0] == 2
        assert grid[1, 0] == 2

    def test_points_outside_extent(self) -> None:
        points = PointSet.from_xyz([0.5, 5, -1], [0.5, 0.5, 0.5], [1, 2, 3])
        grid = rasterize(points, resolution=1, extent=(0, 0, 1, 1), reducer="count")
        assert grid[0, 0] == 1

    def test_nodata(self) -> None:
        points = PointSet.from_xyz([0.5], [0.5], [1])
        grid = rasterize(points, resolution=1, extent=(0, 0, 2, 1), nodata=-9999)

        assert grid.nodata == -9999
        assert grid.data.tolist() == [[1, -9999]]
        assert grid.mask.tolist() == [[False, True]]

    def test_interpolate_missing(self) -> None:
        """Empty cells are filled by interpolation at their center, other cells are unchanged."""

        points = PointSet.from_xyz([0.5, 2.5], [0.5, 0.5], [10, 30])
        grid = rasterize(points, resolution=1, extent=(0, 0, 3, 1), interpolate_missing=True, k=2, power=2)
        assert grid.data.tolist() == [[10, 20, 30]]

        with pytest.raises(InvalidParameterError, match="interpolate_missing"):
            rasterize(points, resolution=1, reducer="count", interpolate_missing=True)
        with pytest.raises(InsufficientPointsError):
            rasterize(PointSet.empty(), resolution=1, extent=(0, 0, 3, 1), interpolate_missing=True)

    def test_interpolated_surface(self) -> None:
        points = PointSet.from_xyz([0.5, 1.5, 0.5, 1.5], [0.5, 0.5, 1.5, 1.5], [1, 2, 3, 4])
        grid = rasterize(points, resolution=1, reducer="idw", extent=(0, 0, 2, 2))
        assert grid.data.tolist() == [[1, 2], [3, 4]]

        # Cell centers between points
        grid = rasterize(points, resolution=2, reducer=reducers.Interpolated(k=4, power=2), extent=(0, 0, 2, 2))
        assert grid[0, 0] == pytest.approx(2.5)

    def test_tin_surface(self) -> None:
        """Triangulation interpolates linearly, and is no-data outside triangles with short enough edges."""

        # Plane z = x + 2y
        x = np.array([0, 4, 0, 4, 2])
        y = np.array([0, 0, 4, 4, 2])
        points = PointSet.from_xyz(x, y, x + 2 * y)

        grid = rasterize(points, resolution=1, extent=(0, 0, 4, 4), reducer="tin")
        xs, ys = grid.geometry.cell_centers()
        assert np.allclose(grid.data, xs[None, :] + 2 * ys[:, None])

        # Cells outside the convex hull
        grid = rasterize(points, resolution=1, extent=(0, 0, 6, 4), reducer="tin")
        assert np.all(grid.mask[:, 4:])

        # All edges longer than 2 are discarded
        grid = rasterize(points, resolution=1, extent=(0, 0, 4, 4), reducer=reducers.Tin(max_edge=2))
        assert np.all(grid.mask)

    def test_tin_surface__degenerate(self) -> None:
        """Collinear or too few points produce a no-data surface."""
        points = PointSet.from_xyz([0, 1, 2], [0, 1, 2], [1, 2, 3])
        assert np.all(rasterize(points, resolution=1, reducer="tin").mask)
        assert np.all(rasterize(PointSet.from_xyz([0, 1], [0, 1], [1, 2]), resolution=1, reducer="tin").mask)

    def test_pitfree(self) -> None:
        """Pits from low returns under the canopy are removed by the higher layers."""

        xx, yy = np.meshgrid(np.arange(0, 11), np.arange(0, 11))
        canopy = PointSet.from_xyz(xx.ravel(), yy.ravel(), np.full(xx.size, 20.0))
        # Pit: a low return inside the canopy, at a cell center
        points = canopy.append(PointSet.from_xyz([5.5], [5.5], [1.0]))

        tin = rasterize(points, resolution=1, extent=(0, 0, 10, 10), reducer="tin")
        pitfree = rasterize(
            points,
            resolution=1,
            extent=(0, 0, 10, 10),
            reducer=reducers.PitFree(thresholds=[0, 10], max_edge=[0, 3]),
        )

        # The pit lowers the triangulated surface around it, but not the pit-free one
        assert tin.value_at(5.2, 5.2) == pytest.approx(1)
        assert np.allclose(pitfree.data, 20)

    def test_rasterize_on_grid(self) -> None:
        geometry = GridGeometry(origin=(0, 0), resolution=1, shape=(1, 2))
        points = PointSet.from_xyz([0.5, 1.5, 1.5], [0.5, 0.5, 0.5], [1, 2, 4])
        grid = rasterize_on_grid(points, geometry, reducer="mean")
        assert grid.data.tolist() == [[1, 3]]

    def test_errors(self) -> None:
        points = PointSet.from_xyz([0.5], [0.5], [1])
        with pytest.raises(InvalidParameterError, match="'resolution'"):
            rasterize(points, resolution=0)
        with pytest.raises(InsufficientPointsError, match="extent"):
            rasterize(PointSet.empty(), resolution=1)

        # Empty point set on a given extent
        assert np.all(rasterize(PointSet.empty(), resolution=1, extent=(0, 0, 2, 2)).mask)
