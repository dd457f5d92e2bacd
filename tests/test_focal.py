"""Test module for focal operations on grids."""

from __future__ import annotations

import numpy as np
import pytest

from lidargrid.exceptions import DimensionMismatchError, InvalidParameterError
from lidargrid.focal import FocalWindow, Kernel, apply
from lidargrid.grid import Grid, GridGeometry


def _grid(data: list[list[float]] | np.ndarray, nodata: float | None = None) -> Grid:
    data = np.asarray(data, dtype=np.float64)
    geometry = GridGeometry(origin=(0, 0), resolution=1, shape=data.shape)
    return Grid(data, geometry, nodata=nodata)


class TestKernel:
    def test_init(self) -> None:
        kernel = Kernel(np.ones((3, 3)))
        assert kernel.size == 3
        assert kernel.anchor == (1, 1)
        assert kernel.footprint.all()

        # Even kernels need an anchor
        with pytest.raises(InvalidParameterError, match="'anchor'"):
            Kernel(np.ones((2, 2)))
        assert Kernel(np.ones((2, 2)), anchor=(0, 0)).anchor == (0, 0)

        with pytest.raises(InvalidParameterError, match="'anchor'"):
            Kernel(np.ones((3, 3)), anchor=(3, 0))
        with pytest.raises(InvalidParameterError, match="square"):
            Kernel(np.ones((3, 2)))
        with pytest.raises(InvalidParameterError, match="finite"):
            Kernel([[1, np.nan, 1], [1, 1, 1], [1, 1, 1]])

    def test_constructors(self) -> None:
        assert np.allclose(Kernel.uniform(3).weights, 1 / 9)
        assert Kernel.identity(5).footprint.sum() == 1

        gaussian = Kernel.gaussian(5, sigma=1)
        assert np.sum(gaussian.weights) == pytest.approx(1)
        assert np.allclose(gaussian.weights, gaussian.weights.T)
        assert np.allclose(gaussian.weights, np.flipud(gaussian.weights))
        assert np.argmax(gaussian.weights) == 12


class TestApply:
    data = np.arange(9, dtype=np.float64).reshape(3, 3)

    @pytest.mark.parametrize("edge_policy", ["shrink", "clamp"])  # type: ignore
    def test_identity(self, edge_policy: str) -> None:
        """The identity kernel returns the same grid, no-data included."""

        data = np.array([[1, 2, 3, 4], [5, -9999, 7, 8], [9, 10, 11, -9999]], dtype=np.float64)
        grid = _grid(data, nodata=-9999)
        filtered = apply(grid, Kernel.identity(3), edge_policy=edge_policy)

        assert filtered.nodata == -9999
        assert filtered.equals(grid)
        assert np.array_equal(filtered.data, data)

    def test_mean_filter(self) -> None:
        """A mean filter on a constant grid gives the constant where the kernel is within the grid."""

        grid = _grid(np.full((5, 6), 3.0))
        kernel = Kernel.uniform(3)

        shrunk = apply(grid, kernel)
        assert np.allclose(shrunk.data[1:-1, 1:-1], 3)
        # Corners only have 4 neighbours out of 9, without renormalization
        assert shrunk.data[0, 0] == pytest.approx(4 / 3)

        assert np.allclose(apply(grid, kernel, edge_policy="clamp").data, 3)
        assert np.allclose(apply(grid, kernel, reducer="mean").data, 3)

    def test_no_data_policy(self) -> None:
        """Any neighbour outside the grid or no-data makes the cell no-data."""

        data = np.ones((6, 6))
        data[1, 1] = np.nan
        filtered = apply(_grid(data), Kernel.uniform(3), edge_policy="no_data")

        mask = filtered.mask
        assert np.all(mask[0, :]) and np.all(mask[-1, :]) and np.all(mask[:, 0]) and np.all(mask[:, -1])
        assert np.all(mask[1:3, 1:3])
        assert np.allclose(filtered.data[3:5, 3:5], 1)

        # With a shrinking edge, the no-data neighbour only contributes 0
        shrunk = apply(_grid(data), Kernel.uniform(3))
        assert shrunk.data[1, 1] == pytest.approx(8 / 9)
        assert np.isnan(apply(_grid(data), Kernel.identity(3)).data[1, 1])

    @pytest.mark.parametrize(
        "reducer, center, corner",
        [("median", 4, 2), ("min", 0, 0), ("max", 8, 4), ("sum", 36, 8), (np.ptp, 8, 4)],
    )  # type: ignore
    def test_statistics(self, reducer: str, center: float, corner: float) -> None:
        filtered = apply(_grid(self.data), Kernel.uniform(3), reducer=reducer)
        assert filtered.data[1, 1] == center
        assert filtered.data[0, 0] == corner

    def test_statistics__nodata(self) -> None:
        """Statistics are computed on valid neighbours only, all no-data neighbourhoods giving no-data."""

        data = self.data.copy()
        data[1, 1] = np.nan
        filtered = apply(_grid(data), Kernel.uniform(3), reducer="mean")
        assert filtered.data[0, 0] == pytest.approx(4 / 3)

        filtered = apply(_grid(data), Kernel.identity(3), reducer="max")
        assert np.isnan(filtered.data[1, 1])
        assert filtered.data[2, 2] == 8

    def test_anchor(self) -> None:
        """The anchor sets the cell of the kernel applied on the output cell."""

        filtered = apply(_grid(self.data), Kernel(np.ones((2, 2)), anchor=(0, 0)))
        assert filtered.data[0, 0] == 0 + 1 + 3 + 4
        assert filtered.data[1, 1] == 4 + 5 + 7 + 8
        # Last row and column only have the anchor cell and one other neighbour
        assert filtered.data[2, 2] == 8
        assert filtered.data[0, 2] == 2 + 5

        # Clamped edges repeat the last row and column
        clamped = apply(_grid(self.data), Kernel(np.ones((2, 2)), anchor=(0, 0)), edge_policy="clamp")
        assert clamped.data[2, 2] == 4 * 8
        assert clamped.data[0, 2] == 2 + 2 + 5 + 5

        # Out-of-bounds neighbours are only on the last row and column
        masked = apply(_grid(self.data), Kernel(np.ones((2, 2)), anchor=(0, 0)), edge_policy="no_data")
        assert masked.mask.tolist() == [[False, False, True], [False, False, True], [True, True, True]]
        assert masked.data[1, 1] == 4 + 5 + 7 + 8

    def test_errors(self) -> None:
        grid = _grid(self.data)
        with pytest.raises(DimensionMismatchError, match="larger"):
            apply(grid, Kernel.uniform(5))
        with pytest.raises(InvalidParameterError, match="'edge_policy'"):
            apply(grid, Kernel.uniform(3), edge_policy="wrap")  # type: ignore
        with pytest.raises(InvalidParameterError, match="'reducer'"):
            apply(grid, Kernel.uniform(3), reducer="mode")


class TestFocalWindow:
    def test_apply(self) -> None:
        grid = _grid(np.arange(25, dtype=np.float64).reshape(5, 5))
        window = FocalWindow(Kernel.uniform(3), reducer="mean", edge_policy="clamp")

        assert window.apply(grid).equals(apply(grid, Kernel.uniform(3), reducer="mean", edge_policy="clamp"))
        assert window.apply(grid).geometry == grid.geometry

        # Weights are converted to a kernel
        assert FocalWindow(np.ones((3, 3))).kernel.size == 3

        # Reducers and edge policies are checked at creation
        with pytest.raises(InvalidParameterError, match="'reducer'"):
            FocalWindow(Kernel.uniform(3), reducer="mode")
        with pytest.raises(InvalidParameterError, match="'edge_policy'"):
            FocalWindow(Kernel.uniform(3), edge_policy="wrap")  # type: ignore
