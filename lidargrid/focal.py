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

"""
Focal (moving window) operations on grids that may contain no-data.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal

import numpy as np
from scipy.ndimage import correlate, generic_filter

from lidargrid._dispatch import _check_positive
from lidargrid._typing import ArrayLike, NDArrayBool, NDArrayNum
from lidargrid.exceptions import DimensionMismatchError, InvalidParameterError
from lidargrid.grid import Grid

EdgePolicy = Literal["shrink", "no_data", "clamp"]

_statistics: dict[str, Callable[..., NDArrayNum]] = {
    "mean": np.nanmean,
    "median": np.nanmedian,
    "min": np.nanmin,
    "max": np.nanmax,
    "sum": np.nansum,
    "std": np.nanstd,
}


class Kernel:
    """
    Square matrix of weights with an anchor cell.

    When applied on a grid, weight [i, j] multiplies the cell at [row + i - anchor_row, col + j - anchor_col] of the
    grid array (row 0 being the southern row). The anchor defaults to the center for odd sizes, and must be given for
    even sizes.
    """

    def __init__(self, weights: ArrayLike, anchor: tuple[int, int] | None = None):

        w = np.array(weights, dtype=np.float64)
        if w.ndim != 2 or w.shape[0] != w.shape[1] or w.shape[0] == 0:
            raise InvalidParameterError("weights", w.shape, "Kernel weights must be a non-empty square matrix.")
        if not np.all(np.isfinite(w)):
            raise InvalidParameterError("weights", weights, "Kernel weights must be finite.")

        size = w.shape[0]
        if anchor is None:
            if size % 2 == 0:
                raise InvalidParameterError("anchor", anchor, f"An anchor is required for kernels of even size {size}.")
            anchor = (size // 2, size // 2)
        elif len(anchor) != 2 or not all(0 <= int(a) < size for a in anchor):
            raise InvalidParameterError("anchor", anchor, f"Anchor must lie within the kernel of size {size}.")

        w.flags.writeable = False
        self._weights = w
        self._anchor = (int(anchor[0]), int(anchor[1]))

    @property
    def weights(self) -> NDArrayNum:
        return self._weights

    @property
    def anchor(self) -> tuple[int, int]:
        return self._anchor

    @property
    def size(self) -> int:
        return self._weights.shape[0]

    @property
    def footprint(self) -> NDArrayBool:
        """Boolean matrix of cells with a non-zero weight."""
        return self._weights != 0

    def __repr__(self) -> str:
        return f"Kernel(size={self.size}, anchor={self.anchor})"

    @classmethod
    def uniform(cls, size: int, anchor: tuple[int, int] | None = None) -> Kernel:
        """Kernel of equal weights summing to 1 (mean filter)."""
        return cls(np.full((size, size), 1 / size**2), anchor=anchor)

    @classmethod
    def identity(cls, size: int = 3) -> Kernel:
        """Kernel of weight 1 at the center and 0 elsewhere."""
        w = np.zeros((size, size))
        w[size // 2, size // 2] = 1
        return cls(w)

    @classmethod
    def gaussian(cls, size: int, sigma: float) -> Kernel:
        """
        Normalized Gaussian kernel.

        :param size: Odd size of the kernel.
        :param sigma: Standard deviation of the Gaussian, in number of cells.
        """
        sigma = _check_positive("sigma", sigma)
        offsets = np.arange(size) - (size - 1) / 2
        xx, yy = np.meshgrid(offsets, offsets)
        w = np.exp(-(xx**2 + yy**2) / (2 * sigma**2))
        return cls(w / np.sum(w))


# Boundary mode of scipy.ndimage filters for each edge policy
_ndimage_modes = {"shrink": "constant", "no_data": "constant", "clamp": "nearest"}


def _check_edge_policy(edge_policy: str) -> EdgePolicy:
    if edge_policy not in _ndimage_modes:
        raise InvalidParameterError("edge_policy", edge_policy, f"Must be one of {list(_ndimage_modes)}.")
    return edge_policy  # type: ignore


def _check_reducer(reducer: Any) -> str | Callable[[NDArrayNum], Any]:
    is_named = isinstance(reducer, str) and (reducer == "weighted_sum" or reducer in _statistics)
    if not (is_named or callable(reducer)):
        raise InvalidParameterError(
            "reducer", reducer, f"Must be 'weighted_sum', one of {list(_statistics)} or a callable."
        )
    return reducer


def _origin(kernel: Kernel) -> tuple[int, int]:
    """Origin of scipy.ndimage filters placing the kernel anchor on the output cell."""
    anchor_row, anchor_col = kernel.anchor
    return anchor_row - kernel.size // 2, anchor_col - kernel.size // 2


def _valid_statistic(func: Callable[[NDArrayNum], Any]) -> Callable[[NDArrayNum], float]:
    """Wrap a statistic to be computed on the valid values of a neighbourhood only."""

    def _reduce(values: NDArrayNum) -> float:
        valid = values[~np.isnan(values)]
        if valid.size == 0:
            return np.nan
        return float(func(valid))

    return _reduce


def apply(
    grid: Grid,
    kernel: Kernel,
    reducer: str | Callable[[NDArrayNum], Any] = "weighted_sum",
    edge_policy: EdgePolicy = "shrink",
) -> Grid:
    """
    Apply a kernel over a grid, producing a grid of identical geometry.

    With the "weighted_sum" reducer, each output cell is the sum of its neighbourhood values multiplied by kernel
    weights, no-data and out-of-bounds neighbours contributing 0. A cell whose non-zero weight neighbours are all
    no-data is no-data.
    With a statistic reducer ("mean", "median", "min", "max", "sum", "std" or a function of a 1D array), the statistic
    is computed on the valid values of the neighbours with a non-zero weight, all no-data neighbourhoods producing
    no-data.

    :param grid: Input grid.
    :param kernel: Kernel.
    :param reducer: "weighted_sum", a statistic name or a function of the 1D array of valid neighbourhood values.
    :param edge_policy: Handling of neighbours outside the grid: "shrink" to omit them (without renormalizing),
        "no_data" to produce no-data where any neighbour is outside the grid or no-data, or "clamp" to use the value of
        the nearest cell inside the grid.

    :raises DimensionMismatchError: If the kernel is larger than the grid in either dimension.

    :return: Filtered grid.
    """

    mode = _ndimage_modes[_check_edge_policy(edge_policy)]
    reducer = _check_reducer(reducer)
    if kernel.size > grid.nrows or kernel.size > grid.ncols:
        raise DimensionMismatchError(f"Kernel of size {kernel.size} is larger than grid of shape {grid.shape}.")

    origin = _origin(kernel)
    footprint = kernel.footprint
    values = grid.filled()
    invalid = np.isnan(values)

    # Number of no-data neighbours with a non-zero weight, out-of-bounds ones included unless clamping
    nb_invalid = correlate(invalid.astype(np.float64), footprint.astype(np.float64), mode=mode, cval=1.0, origin=origin)
    all_invalid = nb_invalid > np.count_nonzero(footprint) - 0.5

    if isinstance(reducer, str) and reducer == "weighted_sum":
        out = correlate(np.where(invalid, 0.0, values), kernel.weights, mode=mode, cval=0.0, origin=origin)
    else:
        func = _statistics[reducer] if isinstance(reducer, str) else reducer
        out = generic_filter(
            values, _valid_statistic(func), footprint=footprint, mode=mode, cval=np.nan, origin=origin
        )

    if edge_policy == "no_data":
        out[nb_invalid > 0.5] = np.nan
    out[all_invalid] = np.nan

    return Grid(np.where(np.isnan(out), grid.nodata, out), grid.geometry, nodata=grid.nodata)


class FocalWindow:
    """Reusable focal operation: a kernel with its reducer and edge policy."""

    def __init__(
        self,
        kernel: Kernel,
        reducer: str | Callable[[NDArrayNum], Any] = "weighted_sum",
        edge_policy: EdgePolicy = "shrink",
    ):
        if not isinstance(kernel, Kernel):
            kernel = Kernel(kernel)
        self.kernel = kernel
        self.reducer = _check_reducer(reducer)
        self.edge_policy = _check_edge_policy(edge_policy)

    def __repr__(self) -> str:
        return f"FocalWindow(kernel={self.kernel!r}, reducer={self.reducer!r}, edge_policy={self.edge_policy!r})"

    def apply(self, grid: Grid) -> Grid:
        return apply(grid, self.kernel, reducer=self.reducer, edge_policy=self.edge_policy)
