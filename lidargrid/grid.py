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

"""Module for the GridGeometry and Grid classes, and their raster sink and source."""

from __future__ import annotations

import logging
import math
import pathlib
from typing import Any

import numpy as np
import rasterio as rio
from rasterio.transform import Affine, from_origin

from lidargrid._dispatch import _check_crs, _check_extent, _check_nodata, _check_positive
from lidargrid._typing import ArrayLike, NDArrayBool, NDArrayInt, NDArrayNum, Number
from lidargrid.exceptions import DimensionMismatchError, InvalidParameterError
from lidargrid.pointset import Extent


def _ceil_cells(length: float, resolution: float) -> int:
    """Number of cells of a given resolution needed to cover a length, robust to floating point noise."""
    return int(math.ceil(round(length / resolution, 9)))


def _floor_cells(length: float, resolution: float) -> int:
    """Number of whole cells of a given resolution fitting in a length, robust to floating point noise."""
    return int(math.floor(round(length / resolution, 9)))


class GridGeometry:
    """
    Georeferenced regular grid.

    Describes a grid through its origin (lower-left corner), square cell resolution, shape and CRS tag.

    Cell (col, row) covers [x0 + col * res, x0 + (col + 1) * res) x [y0 + row * res, y0 + (row + 1) * res): row 0 is
    the southern row, unlike rasterio's north-up convention which is only used when writing to disk.
    """

    def __init__(self, origin: tuple[Number, Number], resolution: Number, shape: tuple[int, int], crs: Any = None):

        self._origin = (float(origin[0]), float(origin[1]))
        self._resolution = _check_positive("resolution", resolution)
        if len(shape) != 2 or any(int(s) != s or s < 0 for s in shape):
            raise InvalidParameterError("shape", shape, "Expected a tuple of two non-negative integers.")
        self._shape = (int(shape[0]), int(shape[1]))
        self._crs = _check_crs(crs)

    @classmethod
    def from_extent(cls, extent: Extent | tuple[Number, Number, Number, Number], resolution: Number, crs: Any = None):
        """
        Derive the grid covering an extent at a resolution.

        The number of columns and rows are the ceiling of the extent width and height divided by the resolution, with
        at least one cell along each axis so that a degenerate extent (single point, aligned points) is still covered.
        """
        xmin, ymin, xmax, ymax = _check_extent(extent)
        res = _check_positive("resolution", resolution)
        ncols = max(_ceil_cells(xmax - xmin, res), 1)
        nrows = max(_ceil_cells(ymax - ymin, res), 1)
        logging.debug("Grid geometry from extent: %d rows x %d columns at resolution %s.", nrows, ncols, res)

        return cls(origin=(xmin, ymin), resolution=res, shape=(nrows, ncols), crs=crs)

    @property
    def origin(self) -> tuple[float, float]:
        return self._origin

    @property
    def resolution(self) -> float:
        return self._resolution

    @property
    def shape(self) -> tuple[int, int]:
        return self._shape

    @property
    def nrows(self) -> int:
        return self._shape[0]

    @property
    def ncols(self) -> int:
        return self._shape[1]

    @property
    def crs(self) -> str | None:
        return self._crs

    @property
    def extent(self) -> Extent:
        x0, y0 = self._origin
        return Extent(x0, y0, x0 + self.ncols * self._resolution, y0 + self.nrows * self._resolution)

    @property
    def transform(self) -> Affine:
        """North-up affine transform, as used by rasterio to write the grid on disk."""
        x0, y0 = self._origin
        return from_origin(x0, y0 + self.nrows * self._resolution, self._resolution, self._resolution)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GridGeometry):
            return NotImplemented
        return (
            self._origin == other._origin
            and self._resolution == other._resolution
            and self._shape == other._shape
            and self._crs == other._crs
        )

    def __repr__(self) -> str:
        return (
            f"GridGeometry(origin={self._origin}, resolution={self._resolution}, shape={self._shape}, "
            f"crs={self._crs!r})"
        )

    def cell_centers(self) -> tuple[NDArrayNum, NDArrayNum]:
        """1D coordinates of cell centers along X (per column) and Y (per row)."""
        x0, y0 = self._origin
        xs = x0 + (np.arange(self.ncols) + 0.5) * self._resolution
        ys = y0 + (np.arange(self.nrows) + 0.5) * self._resolution
        return xs, ys

    def cell_center(self, col: int, row: int) -> tuple[float, float]:
        x0, y0 = self._origin
        return x0 + (col + 0.5) * self._resolution, y0 + (row + 0.5) * self._resolution

    def cell_indices(self, x: ArrayLike, y: ArrayLike) -> tuple[NDArrayInt, NDArrayInt, NDArrayBool]:
        """
        Get the covering cell of coordinates by truncation.

        Coordinates lying exactly on the maximum edge of the grid are assigned to the last row or column.

        :param x: X coordinates.
        :param y: Y coordinates.

        :return: Row indices, column indices and a boolean array of coordinates falling inside the grid.
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        x0, y0 = self._origin
        xmax, ymax = self.extent.xmax, self.extent.ymax

        cols = np.floor((x - x0) / self._resolution).astype(np.int64)
        rows = np.floor((y - y0) / self._resolution).astype(np.int64)

        # Points on the maximum edge belong to the last cell
        cols[(cols >= self.ncols) & (x <= xmax)] = self.ncols - 1
        rows[(rows >= self.nrows) & (y <= ymax)] = self.nrows - 1

        valid = (cols >= 0) & (cols < self.ncols) & (rows >= 0) & (rows < self.nrows)

        return rows, cols, valid

    def subgrid(self, row_off: int, col_off: int, shape: tuple[int, int]) -> GridGeometry:
        """Geometry of a window of this grid, aligned on its cells."""
        x0, y0 = self._origin
        return GridGeometry(
            origin=(x0 + col_off * self._resolution, y0 + row_off * self._resolution),
            resolution=self._resolution,
            shape=shape,
            crs=self._crs,
        )


class Grid:
    """
    A regular grid of float values with a no-data sentinel.

    The array is indexed [row, col] following :class:`GridGeometry`, with row 0 at the southern edge.
    """

    def __init__(self, data: ArrayLike, geometry: GridGeometry, nodata: Number | None = None):
        """
        Instantiate a grid.

        :param data: 2D array of shape (nrows, ncols), row 0 being the southern row.
        :param geometry: Geometry of the grid.
        :param nodata: No-data sentinel. Defaults to the global configuration (NaN).
        """

        array = np.array(data, dtype=np.float64)
        if array.ndim != 2:
            raise DimensionMismatchError(f"Grid data must be 2D, got shape {array.shape}.")
        if array.shape != geometry.shape:
            raise DimensionMismatchError(
                f"Grid data shape {array.shape} does not match geometry shape {geometry.shape}."
            )

        self._data = array
        self._geometry = geometry
        self._nodata = _check_nodata(nodata)

    @classmethod
    def full(cls, geometry: GridGeometry, fill_value: Number, nodata: Number | None = None) -> Grid:
        return cls(np.full(geometry.shape, fill_value, dtype=np.float64), geometry, nodata=nodata)

    @classmethod
    def empty(cls, geometry: GridGeometry, nodata: Number | None = None) -> Grid:
        """Create a grid with all cells set to no-data."""
        nodata = _check_nodata(nodata)
        return cls.full(geometry, nodata, nodata=nodata)

    @classmethod
    def from_array(cls, array: ArrayLike, transform: Affine, crs: Any = None, nodata: Number | None = None) -> Grid:
        """
        Create a grid from a north-up raster array and its affine transform, e.g. the output of band arithmetic.

        :param array: 2D array in raster convention (row 0 is the northern row).
        :param transform: North-up affine transform with square cells.
        :param crs: Coordinate reference system tag.
        :param nodata: No-data sentinel of the array.
        """
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 2:
            raise DimensionMismatchError(f"Raster array must be 2D, got shape {array.shape}.")
        if transform.b != 0 or transform.d != 0 or transform.a <= 0 or transform.e >= 0:
            raise InvalidParameterError("transform", transform, "Expected a north-up transform without rotation.")
        if not np.isclose(transform.a, -transform.e):
            raise InvalidParameterError("transform", transform, "Expected square cells.")

        nrows, ncols = array.shape
        geometry = GridGeometry(
            origin=(transform.c, transform.f + nrows * transform.e),
            resolution=transform.a,
            shape=(nrows, ncols),
            crs=crs,
        )
        return cls(np.flipud(array), geometry, nodata=nodata)

    @property
    def data(self) -> NDArrayNum:
        return self._data

    @property
    def geometry(self) -> GridGeometry:
        return self._geometry

    @property
    def nodata(self) -> float:
        return self._nodata

    @property
    def shape(self) -> tuple[int, int]:
        return self._geometry.shape

    @property
    def nrows(self) -> int:
        return self._geometry.nrows

    @property
    def ncols(self) -> int:
        return self._geometry.ncols

    @property
    def resolution(self) -> float:
        return self._geometry.resolution

    @property
    def origin(self) -> tuple[float, float]:
        return self._geometry.origin

    @property
    def crs(self) -> str | None:
        return self._geometry.crs

    @property
    def extent(self) -> Extent:
        return self._geometry.extent

    @property
    def transform(self) -> Affine:
        return self._geometry.transform

    @property
    def mask(self) -> NDArrayBool:
        """Boolean array, True where cells hold the no-data sentinel (or NaN)."""
        if np.isnan(self._nodata):
            return np.isnan(self._data)
        return (self._data == self._nodata) | np.isnan(self._data)

    def __repr__(self) -> str:
        return f"Grid(shape={self.shape}, nodata={self._nodata}, geometry={self._geometry!r})"

    def __getitem__(self, cell: tuple[int, int]) -> float:
        """Value of cell (col, row)."""
        col, row = cell
        return float(self._data[row, col])

    def copy(self) -> Grid:
        return Grid(self._data.copy(), self._geometry, nodata=self._nodata)

    def filled(self, fill_value: Number = np.nan) -> NDArrayNum:
        """Copy of the data array with no-data cells replaced by a fill value (NaN by default)."""
        return np.where(self.mask, fill_value, self._data)

    def with_nodata(self, nodata: Number) -> Grid:
        """Copy of the grid with a different no-data sentinel."""
        return Grid(self.filled(nodata), self._geometry, nodata=nodata)

    def cell_values(self, x: ArrayLike, y: ArrayLike) -> tuple[NDArrayNum, NDArrayBool]:
        """
        Nearest-cell lookup of grid values at coordinates, without interpolation.

        :return: Values (NaN outside the grid or on no-data cells) and boolean array of valid lookups.
        """
        rows, cols, inside = self._geometry.cell_indices(x, y)
        values = np.full(rows.shape, np.nan, dtype=np.float64)
        values[inside] = self.filled()[rows[inside], cols[inside]]
        valid = inside & np.isfinite(values)
        return values, valid

    def value_at(self, x: Number, y: Number) -> float:
        """Nearest-cell value at a coordinate, no-data sentinel if outside the grid."""
        values, valid = self.cell_values(np.atleast_1d(x), np.atleast_1d(y))
        return float(values[0]) if valid[0] else self._nodata

    def fmax(self, other: Grid) -> Grid:
        """Cell-wise maximum with another grid of the same geometry, ignoring no-data cells."""
        if other.geometry != self._geometry:
            raise DimensionMismatchError(
                f"Cannot combine grids of different geometries: {self._geometry} and {other.geometry}."
            )
        maxed = np.fmax(self.filled(), other.filled())
        return Grid(np.where(np.isnan(maxed), self._nodata, maxed), self._geometry, nodata=self._nodata)

    def equals(self, other: Grid) -> bool:
        """Check that two grids have the same geometry, the same valid values and the same no-data cells."""
        return self._geometry == other.geometry and np.array_equal(self.filled(), other.filled(), equal_nan=True)

    def to_raster_array(self) -> NDArrayNum:
        """Data array in raster convention (row 0 is the northern row), to write with :attr:`Grid.transform`."""
        return np.flipud(self._data).copy()

    def save(self, filename: str | pathlib.Path, driver: str = "GTiff", nodata: Number | None = None) -> None:
        """
        Write the grid to a georeferenced raster file.

        :param filename: Output file.
        :param driver: GDAL driver to write file with.
        :param nodata: No-data value to write. Defaults to the grid's no-data sentinel.
        """
        nodata = self._nodata if nodata is None else float(nodata)
        array = np.where(self.mask, nodata, self._data)

        with rio.open(
            filename,
            "w",
            driver=driver,
            height=self.nrows,
            width=self.ncols,
            count=1,
            dtype="float64",
            crs=self.crs,
            transform=self.transform,
            nodata=nodata,
        ) as dst:
            dst.write(np.flipud(array), 1)

        logging.info("Grid saved under %s", filename)

    @classmethod
    def load(cls, filename: str | pathlib.Path, band: int = 1) -> Grid:
        """
        Read a single band of a georeferenced raster file as a grid.

        :param filename: Input file.
        :param band: Band index (1-based).
        """
        with rio.open(filename) as src:
            array = src.read(band).astype(np.float64)
            transform = src.transform
            crs = src.crs
            nodata = src.nodata

        if crs is not None:
            crs = crs.to_string()
        return cls.from_array(array, transform=transform, crs=crs, nodata=np.nan if nodata is None else nodata)
