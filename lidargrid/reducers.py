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
Per-cell reducers of the grid rasterizer.

Reducers form a closed set: cell statistics computed from the points falling in each cell (mean, standard deviation,
count, min, max or a custom function), and surface reducers evaluated at every cell center from a point neighbourhood
(inverse-distance-weighted interpolation, triangulation, pit-free canopy surface).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from lidargrid._dispatch import _check_idw_params, _check_non_negative
from lidargrid._typing import NDArrayInt, NDArrayNum
from lidargrid.exceptions import InvalidParameterError


@dataclass(frozen=True)
class Reducer:
    """Base class of reducers, defining the point attribute they reduce."""

    attribute: str = "z"


@dataclass(frozen=True)
class CellReducer(Reducer):
    """Reducer computing a statistic of the points falling in each cell."""

    def aggregate(self, values: NDArrayNum, cell_ids: NDArrayInt, nb_cells: int) -> NDArrayNum:
        """
        Reduce values per cell.

        :param values: Attribute values of points.
        :param cell_ids: Flat cell index of each point.
        :param nb_cells: Total number of cells.

        :return: Flat array of reduced values, NaN for cells without points.
        """
        raise NotImplementedError


def _counts(cell_ids: NDArrayInt, nb_cells: int) -> NDArrayInt:
    return np.bincount(cell_ids, minlength=nb_cells)


@dataclass(frozen=True)
class Mean(CellReducer):
    def aggregate(self, values: NDArrayNum, cell_ids: NDArrayInt, nb_cells: int) -> NDArrayNum:
        counts = _counts(cell_ids, nb_cells)
        sums = np.bincount(cell_ids, weights=values, minlength=nb_cells)
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(counts > 0, sums / counts, np.nan)


@dataclass(frozen=True)
class StdDev(CellReducer):
    """
    Standard deviation of cell values, with a two-pass formula.

    The default of ddof=0 gives the population standard deviation; ddof=1 gives the sample one. A cell with no more
    than ddof points has a standard deviation of 0.
    """

    ddof: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.ddof, bool) or not isinstance(self.ddof, (int, np.integer)) or self.ddof < 0:
            raise InvalidParameterError("ddof", self.ddof, "Must be a non-negative integer.")

    def aggregate(self, values: NDArrayNum, cell_ids: NDArrayInt, nb_cells: int) -> NDArrayNum:
        counts = _counts(cell_ids, nb_cells)
        means = Mean().aggregate(values, cell_ids, nb_cells)
        squares = np.bincount(cell_ids, weights=(values - means[cell_ids]) ** 2, minlength=nb_cells)
        dof = counts - self.ddof
        with np.errstate(invalid="ignore", divide="ignore"):
            std = np.where(dof > 0, np.sqrt(squares / np.maximum(dof, 1)), 0.0)
        return np.where(counts > 0, std, np.nan)


@dataclass(frozen=True)
class Count(CellReducer):
    """Number of points per cell. Cells without points hold no-data."""

    def aggregate(self, values: NDArrayNum, cell_ids: NDArrayInt, nb_cells: int) -> NDArrayNum:
        counts = _counts(cell_ids, nb_cells).astype(np.float64)
        counts[counts == 0] = np.nan
        return counts


@dataclass(frozen=True)
class Min(CellReducer):
    def aggregate(self, values: NDArrayNum, cell_ids: NDArrayInt, nb_cells: int) -> NDArrayNum:
        out = np.full(nb_cells, np.inf)
        np.minimum.at(out, cell_ids, values)
        out[np.isinf(out) & (_counts(cell_ids, nb_cells) == 0)] = np.nan
        return out


@dataclass(frozen=True)
class Max(CellReducer):
    def aggregate(self, values: NDArrayNum, cell_ids: NDArrayInt, nb_cells: int) -> NDArrayNum:
        out = np.full(nb_cells, -np.inf)
        np.maximum.at(out, cell_ids, values)
        out[np.isinf(out) & (_counts(cell_ids, nb_cells) == 0)] = np.nan
        return out


@dataclass(frozen=True)
class Custom(CellReducer):
    """
    Arbitrary statistic of cell values.

    The function receives the 1D array of values of each non-empty cell, in input order, and returns a number. It must
    be picklable (e.g., defined at module level) for multiprocessing.
    """

    func: Callable[[NDArrayNum], Any] = field(default=np.mean)

    def __post_init__(self) -> None:
        if not callable(self.func):
            raise InvalidParameterError("func", self.func, "Must be callable.")

    def aggregate(self, values: NDArrayNum, cell_ids: NDArrayInt, nb_cells: int) -> NDArrayNum:
        out = np.full(nb_cells, np.nan)
        if len(values) == 0:
            return out
        order = np.argsort(cell_ids, kind="stable")
        unique_ids, starts = np.unique(cell_ids[order], return_index=True)
        for cell, group in zip(unique_ids, np.split(values[order], starts[1:])):
            out[cell] = float(self.func(group))
        return out


@dataclass(frozen=True)
class Interpolated(Reducer):
    """Inverse-distance-weighted interpolation of the k nearest points at every cell center."""

    k: int | None = None
    power: float | None = None

    def __post_init__(self) -> None:
        # Defaults resolved from the global configuration
        k, power = _check_idw_params(self.k, self.power)
        object.__setattr__(self, "k", k)
        object.__setattr__(self, "power", power)


@dataclass(frozen=True)
class Tin(Reducer):
    """
    Linear interpolation within a Delaunay triangulation of the points, evaluated at every cell center.

    Triangles having an edge longer than max_edge are discarded (0 keeps all triangles). Cells outside the kept
    triangles hold no-data.
    """

    max_edge: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_edge", _check_non_negative("max_edge", self.max_edge))


@dataclass(frozen=True)
class PitFree(Reducer):
    """
    Pit-free canopy surface.

    For each ascending height threshold, a triangulated surface is built from the points with an attribute value above
    or equal to the threshold, and all surfaces are folded with a cell-wise maximum. The first surface uses the first
    max_edge value, all others the second.
    """

    thresholds: Sequence[float] = (0.0, 2.0, 5.0, 10.0, 15.0)
    max_edge: Sequence[float] = (0.0, 1.0)

    def __post_init__(self) -> None:
        thresholds = tuple(float(t) for t in self.thresholds)
        if len(thresholds) == 0 or any(np.diff(thresholds) <= 0):
            raise InvalidParameterError("thresholds", self.thresholds, "Must be a non-empty ascending sequence.")
        if len(self.max_edge) != 2:
            raise InvalidParameterError("max_edge", self.max_edge, "Expected two values.")
        max_edge = tuple(_check_non_negative("max_edge", e) for e in self.max_edge)
        object.__setattr__(self, "thresholds", thresholds)
        object.__setattr__(self, "max_edge", max_edge)

    def layers(self) -> list[tuple[float, Tin]]:
        """Height threshold and triangulation reducer of each layer."""
        return [
            (t, Tin(attribute=self.attribute, max_edge=self.max_edge[0 if i == 0 else 1]))
            for i, t in enumerate(self.thresholds)
        ]


_reducers_names = {
    "mean": Mean,
    "stddev": StdDev,
    "std": StdDev,
    "count": Count,
    "min": Min,
    "max": Max,
    "idw": Interpolated,
    "interpolated": Interpolated,
    "tin": Tin,
    "pitfree": PitFree,
}


def get_reducer(reducer: str | Reducer | Callable[[NDArrayNum], Any], **kwargs: Any) -> Reducer:
    """
    Get a reducer from its name, or wrap a function as a custom reducer.

    :param reducer: Reducer object, name (e.g., "mean", "stddev", "count", "min", "max", "idw", "tin", "pitfree") or
        function of a 1D array of cell values.
    :param kwargs: Parameters of the reducer, e.g., attribute="intensity" or thresholds=[0, 2, 5].

    :return: Reducer object.
    """
    if isinstance(reducer, Reducer):
        if len(kwargs) > 0:
            raise InvalidParameterError("reducer", reducer, "Cannot pass parameters along a reducer object.")
        return reducer
    if isinstance(reducer, str):
        if reducer.lower() not in _reducers_names:
            raise InvalidParameterError(
                "reducer", reducer, f"Unknown reducer name, must be one of {list(_reducers_names)}."
            )
        return _reducers_names[reducer.lower()](**kwargs)
    if callable(reducer):
        return Custom(func=reducer, **kwargs)

    raise InvalidParameterError("reducer", reducer, "Expected a reducer object, name or function.")


__all__ = [
    "Reducer",
    "CellReducer",
    "Mean",
    "StdDev",
    "Count",
    "Min",
    "Max",
    "Custom",
    "Interpolated",
    "Tin",
    "PitFree",
    "get_reducer",
]
