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

"""Elevation products from point sets: terrain, surface, normalized surface and canopy height models."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import numpy as np

from lidargrid._typing import Number
from lidargrid.exceptions import DimensionMismatchError, InsufficientPointsError
from lidargrid.grid import Grid
from lidargrid.multiproc.cluster import AbstractCluster
from lidargrid.pointset import Extent, PointSet
from lidargrid.rasterize import rasterize, rasterize_on_grid
from lidargrid.reducers import Interpolated, Max, PitFree, Reducer
from lidargrid.tiling import TileManager, TilingConfig, normalize

# ASPRS class of ground points
GROUND_CLASS = 2


def _rasterize_maybe_tiled(
    points: PointSet,
    resolution: Number,
    reducer: Reducer,
    extent: Extent | None,
    chunk_size: Number | None,
    cluster: AbstractCluster | None,
    **kwargs: Any,
) -> Grid:
    """Rasterize at once, or chunk by chunk if a chunk size is given."""
    if chunk_size is None:
        return rasterize(points, resolution=resolution, extent=extent, reducer=reducer, **kwargs)

    tiling_config = TilingConfig(resolution=resolution, chunk_size=chunk_size, reducer=reducer, **kwargs)
    return TileManager(tiling_config, cluster=cluster).rasterize_tiled(points, extent=extent)


def terrain_model(
    points: PointSet,
    resolution: Number,
    extent: Extent | None = None,
    ground_class: int | None = GROUND_CLASS,
    class_attribute: str = "classification",
    k: int | None = None,
    power: float | None = None,
    nodata: Number | None = None,
    chunk_size: Number | None = None,
    cluster: AbstractCluster | None = None,
) -> Grid:
    """
    Build a digital terrain model (DTM) by inverse-distance-weighted interpolation of ground points.

    :param points: Point set.
    :param resolution: Cell size of the model.
    :param extent: Extent of the model. Defaults to that of the point set.
    :param ground_class: Class of ground points. If None, all points are used as ground points.
    :param class_attribute: Point attribute holding the class.
    :param k: Number of neighbours for interpolation.
    :param power: Power of inverse distance for interpolation.
    :param nodata: No-data sentinel of the model.
    :param chunk_size: If defined, process in chunks of this size with the default buffer.
    :param cluster: Cluster to dispatch chunks on.

    :raises InsufficientPointsError: If there are no ground points.
    """
    if extent is None:
        extent = points.extent

    if ground_class is not None:
        ground = points.subset(points.attribute(class_attribute) == ground_class)
        logging.debug("Terrain model: %d ground points out of %d.", len(ground), len(points))
    else:
        ground = points

    if len(ground) == 0:
        raise InsufficientPointsError("Cannot build a terrain model: no ground points.")

    return _rasterize_maybe_tiled(
        ground,
        resolution,
        Interpolated(k=k, power=power),
        extent=extent,
        chunk_size=chunk_size,
        cluster=cluster,
        nodata=nodata,
    )


def surface_model(
    points: PointSet,
    resolution: Number,
    extent: Extent | None = None,
    interpolate_missing: bool = True,
    k: int | None = None,
    power: float | None = None,
    nodata: Number | None = None,
    chunk_size: Number | None = None,
    cluster: AbstractCluster | None = None,
) -> Grid:
    """
    Build a digital surface model (DSM) as the highest point of each cell.

    :param points: Point set.
    :param resolution: Cell size of the model.
    :param extent: Extent of the model. Defaults to that of the point set.
    :param interpolate_missing: Whether to fill cells without points by interpolation.
    :param k: Number of neighbours for interpolation.
    :param power: Power of inverse distance for interpolation.
    :param nodata: No-data sentinel of the model.
    :param chunk_size: If defined, process in chunks of this size with the default buffer.
    :param cluster: Cluster to dispatch chunks on.
    """
    return _rasterize_maybe_tiled(
        points,
        resolution,
        Max(),
        extent=extent,
        chunk_size=chunk_size,
        cluster=cluster,
        interpolate_missing=interpolate_missing,
        k=k,
        power=power,
        nodata=nodata,
    )


def normalized_surface_model(dsm: Grid, dtm: Grid, clamp_negative: bool = False) -> Grid:
    """
    Build a normalized surface model (nDSM), the height of the surface above the terrain: DSM - DTM.

    :param dsm: Digital surface model.
    :param dtm: Digital terrain model, of the same geometry.
    :param clamp_negative: Whether to floor negative heights at 0.

    :return: Normalized surface model, no-data where either model is no-data.
    """
    if dsm.geometry != dtm.geometry:
        raise DimensionMismatchError(
            f"Surface and terrain models must share the same geometry, got {dsm.geometry} and {dtm.geometry}."
        )

    heights = dsm.filled() - dtm.filled()
    if clamp_negative:
        heights = np.where(heights < 0, 0, heights)

    return Grid(np.where(np.isnan(heights), dsm.nodata, heights), dsm.geometry, nodata=dsm.nodata)


def canopy_height_model(
    points: PointSet,
    dtm: Grid,
    thresholds: Sequence[float] = (0.0, 2.0, 5.0, 10.0, 15.0),
    max_edge: Sequence[float] = (0.0, 1.0),
    clamp_negative: bool = True,
) -> Grid:
    """
    Build a pit-free canopy height model (CHM) on the grid of a terrain model.

    Point heights are first normalized by the terrain model, then a pit-free surface is built from normalized heights.

    :param points: Point set.
    :param dtm: Digital terrain model, also defining the grid of the canopy height model.
    :param thresholds: Ascending height thresholds of the pit-free layers.
    :param max_edge: Maximum triangle edge of the first layer and of all other layers (0 for no limit).
    :param clamp_negative: Whether to floor negative normalized heights at 0.
    """
    heights = normalize(points, dtm, clamp_negative=clamp_negative)
    return rasterize_on_grid(
        heights,
        dtm.geometry,
        reducer=PitFree(thresholds=thresholds, max_edge=max_edge),
        nodata=dtm.nodata,
    )
