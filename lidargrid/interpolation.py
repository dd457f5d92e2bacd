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

"""Functionalities for k-nearest neighbour inverse-distance-weighted interpolation."""

from __future__ import annotations

import logging

import numpy as np

from lidargrid._dispatch import _check_idw_params
from lidargrid._typing import ArrayLike, NDArrayNum, Number
from lidargrid.exceptions import InsufficientPointsError
from lidargrid.spatial_index import SpatialIndex


def _idw(values: NDArrayNum, distances: NDArrayNum, power: float) -> float:
    """Inverse-distance-weighted mean of neighbour values, for strictly positive distances."""
    weights = 1.0 / distances**power
    return float(np.sum(weights * values) / np.sum(weights))


def interpolate(
    index: SpatialIndex,
    x: Number,
    y: Number,
    k: int | None = None,
    power: float | None = None,
    attribute: str = "z",
) -> float:
    """
    Interpolate a point attribute at a location by inverse distance weighting of its k nearest neighbours.

    Each neighbour i at distance d_i is weighted by 1 / d_i ** power. If one or several points lie exactly at the
    query location, their (mean) value is returned.

    :param index: Spatial index of the point set.
    :param x: X coordinate of the query.
    :param y: Y coordinate of the query.
    :param k: Number of neighbours. Defaults to the global configuration.
    :param power: Power of inverse distance. Defaults to the global configuration.
    :param attribute: Attribute to interpolate ("z" for elevation).

    :raises InsufficientPointsError: If the index is empty.
    :raises InvalidParameterError: If k < 1 or power <= 0.

    :return: Interpolated value.
    """
    k, power = _check_idw_params(k, power)
    if len(index) == 0:
        raise InsufficientPointsError("Cannot interpolate: the point set is empty.")

    values = index.points.attribute(attribute)
    indices, distances = index.knn_indices(x, y, k)

    if distances[0] == 0:
        # All coinciding points, not only those among the k nearest
        coincident, _ = index.radius_indices(x, y, 0.0)
        return float(np.mean(values[coincident]))

    return _idw(values[indices], distances, power)


def interpolate_many(
    index: SpatialIndex,
    xs: ArrayLike,
    ys: ArrayLike,
    k: int | None = None,
    power: float | None = None,
    attribute: str = "z",
) -> NDArrayNum:
    """
    Interpolate a point attribute at several locations, see :func:`interpolate`.

    :param index: Spatial index of the point set.
    :param xs: X coordinates of the queries.
    :param ys: Y coordinates of the queries.
    :param k: Number of neighbours. Defaults to the global configuration.
    :param power: Power of inverse distance. Defaults to the global configuration.
    :param attribute: Attribute to interpolate.

    :return: Array of interpolated values, of the same shape as the query coordinates.
    """
    k, power = _check_idw_params(k, power)
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    if xs.shape != ys.shape:
        raise ValueError(f"Query coordinates must have the same shape, got {xs.shape} and {ys.shape}.")

    logging.debug("Interpolating %d locations with k=%d and power=%s.", xs.size, k, power)

    out = np.empty(xs.size, dtype=np.float64)
    for i, (x, y) in enumerate(zip(xs.ravel(), ys.ravel())):
        out[i] = interpolate(index, x, y, k=k, power=power, attribute=attribute)

    return out.reshape(xs.shape)


class KNNInterpolator:
    """Inverse-distance-weighted interpolator over the k nearest neighbours of a spatial index."""

    def __init__(self, k: int | None = None, power: float | None = None):
        """
        :param k: Number of neighbours. Defaults to the global configuration.
        :param power: Power of inverse distance. Defaults to the global configuration.
        """
        self.k, self.power = _check_idw_params(k, power)

    def __repr__(self) -> str:
        return f"KNNInterpolator(k={self.k}, power={self.power})"

    def interpolate(self, index: SpatialIndex, x: Number, y: Number, attribute: str = "z") -> float:
        return interpolate(index, x, y, k=self.k, power=self.power, attribute=attribute)

    def interpolate_many(self, index: SpatialIndex, xs: ArrayLike, ys: ArrayLike, attribute: str = "z") -> NDArrayNum:
        return interpolate_many(index, xs, ys, k=self.k, power=self.power, attribute=attribute)
