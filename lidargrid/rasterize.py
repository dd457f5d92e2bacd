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

"""Functionalities for rasterizing point sets on regular grids with per-cell reducers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import numpy as np
from scipy.spatial import Delaunay, QhullError

from lidargrid._dispatch import _check_crs, _check_idw_params, _check_nodata
from lidargrid._typing import NDArrayBool, NDArrayInt, NDArrayNum, Number
from lidargrid.exceptions import InsufficientPointsError, InvalidParameterError
from lidargrid.grid import Grid, GridGeometry
from lidargrid.interpolation import interpolate_many
from lidargrid.pointset import Extent, PointSet
from lidargrid.reducers import CellReducer, Count, Interpolated, PitFree, Reducer, Tin, get_reducer
from lidargrid.spatial_index import SpatialIndex


def _tin_surface(points: PointSet, geometry: GridGeometry, tin: Tin) -> NDArrayNum | None:
    """
    Linearly interpolate a point attribute at cell centers within a Delaunay triangulation of the points.

    :param points: Point set.
    :param geometry: Output grid geometry.
    :param tin: Triangulation reducer.

    :return: Surface array with NaNs outside kept triangles, or None if the points cannot be triangulated.
    """
    if len(points) < 3:
        return None

    xy = np.column_stack([points.x, points.y])
    try:
        tri = Delaunay(xy)
    except QhullError:
        # Collinear points
        return None

    xs, ys = geometry.cell_centers()
    grid_x, grid_y = np.meshgrid(xs, ys)
    query = np.column_stack([grid_x.ravel(), grid_y.ravel()])
    simplex = tri.find_simplex(query)
    inside = simplex >= 0

    # Discard triangles with a long edge, usually spanning gaps in the point coverage
    if tin.max_edge > 0:
        vertices = xy[tri.simplices]
        longest = np.max(np.linalg.norm(vertices - np.roll(vertices, 1, axis=1), axis=2), axis=1)
        inside[inside] = longest[simplex[inside]] <= tin.max_edge

    # Barycentric coordinates of query points in their triangle
    simplex_in = simplex[inside]
    transform = tri.transform[simplex_in]
    bary = np.einsum("ijk,ik->ij", transform[:, :2, :], query[inside] - transform[:, 2, :])
    bary = np.column_stack([bary, 1 - bary.sum(axis=1)])

    values = points.attribute(tin.attribute)
    out = np.full(len(query), np.nan)
    out[inside] = np.sum(values[tri.simplices[simplex_in]] * bary, axis=1)

    return out.reshape(geometry.shape)


def _pitfree_surface(points: PointSet, geometry: GridGeometry, pitfree: PitFree) -> NDArrayNum:
    """Fold the triangulated surfaces of all height threshold layers with a cell-wise maximum."""

    heights = points.attribute(pitfree.attribute)
    surface = Grid.empty(geometry)
    for threshold, tin in pitfree.layers():
        layer_points = points.subset(heights >= threshold)
        layer = _tin_surface(layer_points, geometry, tin)
        if layer is None:
            logging.debug(
                "Pit-free: skipping layer of threshold %s with %d points that cannot be triangulated.",
                threshold,
                len(layer_points),
            )
            continue
        surface = surface.fmax(Grid(layer, geometry))

    return surface.filled()


def _cell_surface(
    points: PointSet,
    geometry: GridGeometry,
    reducer: CellReducer,
    cell_indices: tuple[NDArrayInt, NDArrayInt, NDArrayBool] | None = None,
) -> NDArrayNum:
    """Reduce the attribute values of points falling in each cell."""

    if cell_indices is None:
        cell_indices = geometry.cell_indices(points.x, points.y)
    rows, cols, valid = cell_indices

    cell_ids = rows[valid] * geometry.ncols + cols[valid]
    values = points.attribute(reducer.attribute)[valid]
    nb_cells = geometry.nrows * geometry.ncols

    return reducer.aggregate(values, cell_ids, nb_cells).reshape(geometry.shape)


def _fill_missing(
    surface: NDArrayNum,
    index: SpatialIndex,
    geometry: GridGeometry,
    k: int,
    power: float,
    attribute: str,
) -> NDArrayNum:
    """Fill empty cells by inverse-distance-weighted interpolation at their center."""

    missing = np.isnan(surface)
    if not np.any(missing):
        return surface

    rows, cols = np.nonzero(missing)
    xs, ys = geometry.cell_centers()
    filled = surface.copy()
    filled[rows, cols] = interpolate_many(index, xs[cols], ys[rows], k=k, power=power, attribute=attribute)
    logging.debug("Filled %d empty cells by interpolation.", len(rows))

    return filled


def rasterize_on_grid(
    points: PointSet,
    geometry: GridGeometry,
    reducer: str | Reducer | Callable[[NDArrayNum], Any] = "mean",
    interpolate_missing: bool = False,
    k: int | None = None,
    power: float | None = None,
    nodata: Number | None = None,
    bucket_size: Number | None = None,
    cell_indices: tuple[NDArrayInt, NDArrayInt, NDArrayBool] | None = None,
) -> Grid:
    """
    Rasterize a point set on a given grid geometry.

    See :func:`rasterize` for the description of parameters.

    :param cell_indices: Precomputed covering cells (rows, columns, validity) of points on the grid, if those differ
        from a direct lookup on the geometry (e.g., points on the edge of a window of a larger grid).
    """
    reducer = get_reducer(reducer)
    k, power = _check_idw_params(k, power)
    nodata = _check_nodata(nodata)

    if interpolate_missing and isinstance(reducer, Count):
        raise InvalidParameterError("interpolate_missing", interpolate_missing, "Not supported with a count reducer.")

    needs_index = interpolate_missing or isinstance(reducer, Interpolated)
    if needs_index and len(points) == 0:
        raise InsufficientPointsError("Cannot interpolate on the grid: the point set is empty.")

    # Build the spatial index only for interpolation
    index = SpatialIndex.build(points, bucket_size=bucket_size) if needs_index else None

    # 1/ Compute the surface with NaNs for cells without a value
    if isinstance(reducer, CellReducer):
        surface = _cell_surface(points, geometry, reducer, cell_indices=cell_indices)
    elif isinstance(reducer, Interpolated):
        xs, ys = geometry.cell_centers()
        grid_x, grid_y = np.meshgrid(xs, ys)
        surface = interpolate_many(index, grid_x, grid_y, k=reducer.k, power=reducer.power, attribute=reducer.attribute)
    elif isinstance(reducer, Tin):
        surface = _tin_surface(points, geometry, reducer)
        if surface is None:
            logging.warning(
                "Cannot triangulate %d points: the surface is filled with no-data.",
                len(points),
            )
            surface = np.full(geometry.shape, np.nan)
    elif isinstance(reducer, PitFree):
        surface = _pitfree_surface(points, geometry, reducer)
    else:
        raise InvalidParameterError("reducer", reducer, "Unsupported reducer type.")

    # 2/ Fill empty cells if required
    if interpolate_missing:
        surface = _fill_missing(surface, index, geometry, k=k, power=power, attribute=reducer.attribute)

    return Grid(np.where(np.isnan(surface), nodata, surface), geometry, nodata=nodata)


def rasterize(
    points: PointSet,
    resolution: Number,
    extent: Extent | tuple[Number, Number, Number, Number] | None = None,
    reducer: str | Reducer | Callable[[NDArrayNum], Any] = "mean",
    interpolate_missing: bool = False,
    k: int | None = None,
    power: float | None = None,
    nodata: Number | None = None,
    crs: Any = None,
    bucket_size: Number | None = None,
) -> Grid:
    """
    Rasterize a point set on a regular grid covering an extent, reducing the points of each cell.

    Points are assigned to their covering cell by truncation of (x - xmin) / resolution and (y - ymin) / resolution,
    points on the maximum edge of the extent falling in the last cell and points outside the extent being ignored.
    The grid has ceil(width / resolution) columns and ceil(height / resolution) rows (at least one of each).

    :param points: Point set to rasterize.
    :param resolution: Cell size, in georeferenced units.
    :param extent: Extent (xmin, ymin, xmax, ymax) of the grid. Defaults to the extent of the point set.
    :param reducer: Reducer object, reducer name (e.g., "mean", "stddev", "count", "max", "idw", "tin", "pitfree") or
        function computing a statistic of the 1D array of values of each cell.
    :param interpolate_missing: Whether to fill cells without points by inverse-distance-weighted interpolation of the
        k nearest points at the cell center.
    :param k: Number of neighbours for interpolation. Defaults to the global configuration.
    :param power: Power of inverse distance for interpolation. Defaults to the global configuration.
    :param nodata: No-data sentinel of the output grid. Defaults to the global configuration (NaN).
    :param crs: Coordinate reference system tag of the output grid. Defaults to that of the point set.
    :param bucket_size: Bucket size of the spatial index used for interpolation. Defaults to one derived from the
        point density.

    :raises InvalidParameterError: If a parameter is invalid.
    :raises InsufficientPointsError: If the point set is empty while interpolation is required, or if no extent can be
        derived.

    :return: Rasterized grid.
    """
    if extent is None:
        if points.extent is None:
            raise InsufficientPointsError("Cannot derive the grid extent: the point set is empty.")
        extent = points.extent

    crs = points.crs if crs is None else _check_crs(crs)
    geometry = GridGeometry.from_extent(extent, resolution=resolution, crs=crs)

    logging.debug("Rasterizing %d points on a grid of shape %s.", len(points), geometry.shape)

    return rasterize_on_grid(
        points,
        geometry,
        reducer=reducer,
        interpolate_missing=interpolate_missing,
        k=k,
        power=power,
        nodata=nodata,
        bucket_size=bucket_size,
    )
