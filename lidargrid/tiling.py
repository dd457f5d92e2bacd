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

"""Tiled rasterization of large point sets with overlap buffers, and height normalization."""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import warnings
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import cached_property
from typing import Any

import numpy as np
from tqdm import tqdm

from lidargrid._config import config
from lidargrid._dispatch import (
    _check_idw_params,
    _check_non_negative,
    _check_nodata,
    _check_positive,
)
from lidargrid._typing import NDArrayInt, NDArrayNum, Number
from lidargrid.exceptions import (
    InsufficientPointsError,
    InvalidParameterError,
    OutOfBoundsPointWarning,
    TilingCancelledError,
)
from lidargrid.grid import Grid, GridGeometry, _floor_cells
from lidargrid.multiproc.cluster import AbstractCluster, ClusterGenerator
from lidargrid.pointset import Extent, PointSet
from lidargrid.rasterize import rasterize_on_grid
from lidargrid.reducers import Count, Reducer, get_reducer


@dataclass(frozen=True)
class TilingConfig:
    """
    Configuration of a tiled rasterization.

    Unset parameters are resolved from the global configuration at creation, and all parameters are validated.

    :param resolution: Cell size of the output grid, in georeferenced units.
    :param chunk_size: Side of square chunks, in georeferenced units (snapped to a whole number of cells).
    :param buffer: Margin around each chunk in which points are also used, in georeferenced units.
    :param reducer: Reducer object, name or function of cell values.
    :param interpolate_missing: Whether to fill cells without points by inverse-distance-weighted interpolation.
    :param k: Number of neighbours for interpolation.
    :param power: Power of inverse distance for interpolation.
    :param nodata: No-data sentinel of the output grid.
    :param bucket_size: Bucket size of spatial indexes. Defaults to one derived from the point density.
    :param progress: Whether to display a progress bar over chunks.
    """

    resolution: float
    chunk_size: float | None = None
    buffer: float | None = None
    reducer: str | Reducer | Callable[[NDArrayNum], Any] = "mean"
    interpolate_missing: bool = False
    k: int | None = None
    power: float | None = None
    nodata: float | None = None
    bucket_size: float | None = None
    progress: bool = False

    def __post_init__(self) -> None:

        chunk_size = config["chunk_size"] if self.chunk_size is None else self.chunk_size
        buffer = config["buffer"] if self.buffer is None else self.buffer
        k, power = _check_idw_params(self.k, self.power)
        reducer = get_reducer(self.reducer)

        resolved = {
            "resolution": _check_positive("resolution", self.resolution),
            "chunk_size": _check_positive("chunk_size", chunk_size),
            "buffer": _check_non_negative("buffer", buffer),
            "reducer": reducer,
            "k": k,
            "power": power,
            "nodata": _check_nodata(self.nodata),
            "bucket_size": None if self.bucket_size is None else _check_positive("bucket_size", self.bucket_size),
        }
        for name, value in resolved.items():
            object.__setattr__(self, name, value)

        if self.interpolate_missing and isinstance(reducer, Count):
            raise InvalidParameterError(
                "interpolate_missing", self.interpolate_missing, "Not supported with a count reducer."
            )

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> TilingConfig:
        """Create a configuration from a mapping of parameters, e.g. read from a user file."""
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(params) - names)
        if len(unknown) > 0:
            raise InvalidParameterError(
                unknown[0], params[unknown[0]], f"Unknown tiling parameter, must be one of {sorted(names)}."
            )
        if "resolution" not in params:
            raise InvalidParameterError("resolution", None, "A resolution must be provided.")
        return cls(**params)

    def replace(self, **changes: Any) -> TilingConfig:
        """Copy of the configuration with some parameters changed."""
        return dataclasses.replace(self, **changes)


@dataclass
class Chunk:
    """
    Square sub-extent of a global grid, with the points of its buffered extent.

    Points are held as indices into the parent point set, and only materialized on access.
    """

    # Window of the chunk in the global grid, as [row_min, row_max, col_min, col_max] (max excluded)
    window: tuple[int, int, int, int]
    core: Extent
    buffered: Extent
    parent: PointSet
    indices: NDArrayInt

    @property
    def shape(self) -> tuple[int, int]:
        return self.window[1] - self.window[0], self.window[3] - self.window[2]

    @property
    def nb_points(self) -> int:
        return len(self.indices)

    @cached_property
    def points(self) -> PointSet:
        return self.parent.subset(self.indices)


def _generate_chunk_windows(nrows: int, ncols: int, chunk_cells: int) -> NDArrayInt:
    """
    Generate a grid of chunk windows by splitting [0, nrows] x [0, ncols] into square chunks of chunk_cells cells.

    Chunks on the northern and eastern sides are cropped to the grid.

    :return: Array of shape (nb_row_chunks, nb_col_chunks, 4) where each element contains
        [row_min, row_max, col_min, col_max].
    """
    nb_row_split = math.ceil(nrows / chunk_cells)
    nb_col_split = math.ceil(ncols / chunk_cells)

    windows = np.zeros(shape=(nb_row_split, nb_col_split, 4), dtype=int)
    for row in range(nb_row_split):
        for col in range(nb_col_split):
            windows[row, col] = [
                row * chunk_cells,
                min(nrows, (row + 1) * chunk_cells),
                col * chunk_cells,
                min(ncols, (col + 1) * chunk_cells),
            ]

    return windows


def _rasterize_chunk(
    points: PointSet,
    geometry: GridGeometry,
    rows: NDArrayInt,
    cols: NDArrayInt,
    tiling_config: TilingConfig,
) -> Grid:
    """
    Rasterize the buffered points of a chunk on the chunk grid.

    :param points: Points of the buffered extent of the chunk.
    :param geometry: Geometry of the chunk grid (a window of the global grid).
    :param rows: Row of the covering cell of each point in the chunk grid.
    :param cols: Column of the covering cell of each point in the chunk grid.
    :param tiling_config: Tiling configuration.
    """
    if len(points) == 0:
        return Grid.empty(geometry, nodata=tiling_config.nodata)

    valid = (rows >= 0) & (rows < geometry.nrows) & (cols >= 0) & (cols < geometry.ncols)

    return rasterize_on_grid(
        points,
        geometry,
        reducer=tiling_config.reducer,
        interpolate_missing=tiling_config.interpolate_missing,
        k=tiling_config.k,
        power=tiling_config.power,
        nodata=tiling_config.nodata,
        bucket_size=tiling_config.bucket_size,
        cell_indices=(rows, cols, valid),
    )


def normalize(points: PointSet, terrain_grid: Grid, clamp_negative: bool = False) -> PointSet:
    """
    Normalize point heights by subtracting the terrain value of their covering cell.

    Points outside the terrain grid or on its no-data cells are dropped, and reported once as an aggregated warning.

    :param points: Point set to normalize.
    :param terrain_grid: Terrain grid (e.g., digital terrain model).
    :param clamp_negative: Whether to floor normalized heights at 0.

    :return: Point set of normalized heights (Z is the height above terrain), in input order.
    """
    terrain, valid = terrain_grid.cell_values(points.x, points.y)

    nb_dropped = int(np.count_nonzero(~valid))
    if nb_dropped > 0:
        warnings.warn(
            category=OutOfBoundsPointWarning,
            message=f"{nb_dropped} points dropped as out-of-bounds of the terrain grid (outside or on no-data cells).",
        )
        logging.info("Normalization dropped %d out of %d points.", nb_dropped, len(points))

    heights = points.z[valid] - terrain[valid]
    if clamp_negative:
        heights = np.maximum(heights, 0)

    return points.subset(valid).with_z(heights)


class TileManager:
    """
    Chunked rasterization of point sets too large to be processed at once.

    The global grid is partitioned into square chunks. Each chunk is rasterized from the points of its extent
    expanded by a buffer, so that interpolation at chunk borders sees the neighbouring points, and only the cells of the
    chunk itself are written to the global grid.
    """

    def __init__(self, tiling_config: TilingConfig, cluster: AbstractCluster | None = None):
        """
        :param tiling_config: Tiling configuration.
        :param cluster: Cluster to dispatch chunks on. Defaults to a sequential cluster.
        """
        self.config = tiling_config
        if cluster is None:
            cluster = ClusterGenerator("basic")
        self.cluster = cluster

    def grid_geometry(self, points: PointSet, extent: Extent | None = None) -> GridGeometry:
        """Geometry of the global output grid."""
        if extent is None:
            if points.extent is None:
                raise InsufficientPointsError("Cannot derive the grid extent: the point set is empty.")
            extent = points.extent
        return GridGeometry.from_extent(extent, resolution=self.config.resolution, crs=points.crs)

    def chunks(self, points: PointSet, extent: Extent | None = None) -> list[Chunk]:
        """
        Partition the global grid into chunks, each holding the points of its buffered extent.

        :param points: Point set.
        :param extent: Extent of the global grid. Defaults to that of the point set.
        """
        geometry = self.grid_geometry(points, extent=extent)
        chunk_cells = max(_floor_cells(self.config.chunk_size, self.config.resolution), 1)
        windows = _generate_chunk_windows(geometry.nrows, geometry.ncols, chunk_cells)

        chunks = []
        for window in windows.reshape(-1, 4):
            row_min, row_max, col_min, col_max = (int(w) for w in window)
            core = geometry.subgrid(row_min, col_min, (row_max - row_min, col_max - col_min)).extent
            buffered = core.buffer(self.config.buffer)
            indices = np.flatnonzero(buffered.contains(points.x, points.y))
            chunks.append(
                Chunk(
                    window=(row_min, row_max, col_min, col_max),
                    core=core,
                    buffered=buffered,
                    parent=points,
                    indices=indices,
                )
            )

        logging.debug(
            "Tiling: %d chunks of %d cells for a grid of shape %s.", len(chunks), chunk_cells, geometry.shape
        )

        return chunks

    def rasterize_tiled(
        self, points: PointSet, extent: Extent | None = None, cancel_event: threading.Event | None = None
    ) -> Grid:
        """
        Rasterize a point set chunk by chunk, and stitch chunk grids into the global grid.

        :param points: Point set.
        :param extent: Extent of the global grid. Defaults to that of the point set.
        :param cancel_event: Event checked between chunk dispatches, to cancel the processing.

        :raises TilingCancelledError: If the cancel event is set during processing.

        :return: Global grid.
        """
        geometry = self.grid_geometry(points, extent=extent)
        chunks = self.chunks(points, extent=extent)

        # Covering cell of all points in the global grid
        rows, cols, _ = geometry.cell_indices(points.x, points.y)

        def _check_cancelled() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise TilingCancelledError("Tiled rasterization was cancelled.")

        # 1/ Dispatch chunks on the cluster
        tasks = []
        for chunk in chunks:
            _check_cancelled()
            row_min, _, col_min, _ = chunk.window
            chunk_geometry = geometry.subgrid(row_min, col_min, chunk.shape)
            tasks.append(
                self.cluster.launch_task(
                    fun=_rasterize_chunk,
                    args=[
                        chunk.points,
                        chunk_geometry,
                        rows[chunk.indices] - row_min,
                        cols[chunk.indices] - col_min,
                        self.config,
                    ],
                )
            )

        # 2/ Stitch the chunk grids, each writing its own window of the global grid
        data = np.full(geometry.shape, self.config.nodata, dtype=np.float64)
        for chunk, task in tqdm(
            zip(chunks, tasks), total=len(chunks), desc="Rasterizing chunks", disable=not self.config.progress
        ):
            _check_cancelled()
            chunk_grid = self.cluster.get_res(task)
            row_min, row_max, col_min, col_max = chunk.window
            data[row_min:row_max, col_min:col_max] = chunk_grid.data

        logging.info("Rasterized %d points in %d chunks.", len(points), len(chunks))

        return Grid(data, geometry, nodata=self.config.nodata)

    def normalize(self, points: PointSet, terrain_grid: Grid, clamp_negative: bool = False) -> PointSet:
        """Normalize point heights with a terrain grid, see :func:`lidargrid.tiling.normalize`."""
        return normalize(points, terrain_grid, clamp_negative=clamp_negative)


def rasterize_tiled(
    points: PointSet,
    resolution: Number,
    chunk_size: Number | None = None,
    buffer: Number | None = None,
    reducer: str | Reducer | Callable[[NDArrayNum], Any] = "mean",
    extent: Extent | None = None,
    cluster: AbstractCluster | None = None,
    cancel_event: threading.Event | None = None,
    **options: Any,
) -> Grid:
    """
    Rasterize a large point set chunk by chunk with overlap buffers.

    :param points: Point set.
    :param resolution: Cell size of the output grid.
    :param chunk_size: Side of square chunks. Defaults to the global configuration.
    :param buffer: Margin around each chunk in which points are also used. Defaults to the global configuration.
    :param reducer: Reducer object, name or function of cell values.
    :param extent: Extent of the global grid. Defaults to that of the point set.
    :param cluster: Cluster to dispatch chunks on. Defaults to a sequential cluster.
    :param cancel_event: Event checked between chunk dispatches, to cancel the processing.
    :param options: Other parameters of :class:`TilingConfig` (interpolate_missing, k, power, nodata, bucket_size,
        progress).

    :return: Global grid.
    """
    tiling_config = TilingConfig(
        resolution=resolution, chunk_size=chunk_size, buffer=buffer, reducer=reducer, **options
    )
    return TileManager(tiling_config, cluster=cluster).rasterize_tiled(points, extent=extent, cancel_event=cancel_event)
