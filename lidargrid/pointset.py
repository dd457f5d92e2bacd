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

"""Module for the Point, Extent and PointSet classes."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple

import geopandas as gpd
import numpy as np

from lidargrid._dispatch import _check_crs
from lidargrid._typing import ArrayLike, NDArrayBool, NDArrayNum

_COORDINATES = ("x", "y", "z")


@dataclass(frozen=True)
class Point:
    """A single 3D point with its per-point attributes (intensity, return number, classification...)."""

    x: float
    y: float
    z: float
    attributes: Mapping[str, float] = field(default_factory=dict)


class Extent(NamedTuple):
    """Bounding extent (xmin, ymin, xmax, ymax) of a point set or a grid."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    def buffer(self, distance: float) -> Extent:
        """Expand the extent by a distance on every side."""
        return Extent(self.xmin - distance, self.ymin - distance, self.xmax + distance, self.ymax + distance)

    def contains(self, x: ArrayLike, y: ArrayLike) -> NDArrayBool:
        """Check which coordinates lie inside the extent, borders included."""
        x = np.asarray(x)
        y = np.asarray(y)
        return (x >= self.xmin) & (x <= self.xmax) & (y >= self.ymin) & (y <= self.ymax)

    def intersection(self, other: Extent) -> Extent | None:
        """Intersection with another extent, or None if they do not intersect."""
        xmin, ymin = max(self.xmin, other.xmin), max(self.ymin, other.ymin)
        xmax, ymax = min(self.xmax, other.xmax), min(self.ymax, other.ymax)
        if xmin > xmax or ymin > ymax:
            return None
        return Extent(xmin, ymin, xmax, ymax)

    @classmethod
    def from_xy(cls, x: NDArrayNum, y: NDArrayNum) -> Extent | None:
        """Tight bounding extent of coordinates, or None if there are none."""
        if len(x) == 0:
            return None
        return cls(float(np.min(x)), float(np.min(y)), float(np.max(x)), float(np.max(y)))


class PointSet:
    """
    The georeferenced point set of LidarGrid.

    Points are stored column-wise as read-only NumPy arrays: X/Y/Z coordinates and one array per attribute. The
    coordinate reference system is an opaque tag that is carried through, never interpreted.

    A PointSet is immutable: operations such as :func:`PointSet.append` or :func:`PointSet.subset` return a new point
    set, with its extent recomputed.
    """

    def __init__(
        self,
        x: ArrayLike,
        y: ArrayLike,
        z: ArrayLike,
        attributes: Mapping[str, ArrayLike] | None = None,
        crs: Any = None,
    ):
        """
        Instantiate a point set from coordinate arrays.

        :param x: X coordinates.
        :param y: Y coordinates.
        :param z: Z coordinates (elevation).
        :param attributes: Per-point attributes, as a mapping of name to array of the same length as coordinates.
        :param crs: Coordinate reference system tag (string, EPSG code or object implementing "to_string").
        """

        x_arr = np.array(x, dtype=np.float64).reshape(-1)
        y_arr = np.array(y, dtype=np.float64).reshape(-1)
        z_arr = np.array(z, dtype=np.float64).reshape(-1)
        if not (len(x_arr) == len(y_arr) == len(z_arr)):
            raise ValueError(
                f"Coordinates must have the same length, got lengths of {len(x_arr)}, {len(y_arr)} and {len(z_arr)}."
            )

        attrs = {}
        for name, values in (attributes or {}).items():
            if name in _COORDINATES:
                raise ValueError(f"Attribute name {name!r} is reserved for coordinates.")
            arr = np.array(values, dtype=np.float64).reshape(-1)
            if len(arr) != len(x_arr):
                raise ValueError(
                    f"Attribute {name!r} must have the same length as coordinates ({len(x_arr)}), got {len(arr)}."
                )
            attrs[name] = arr

        for arr in (x_arr, y_arr, z_arr, *attrs.values()):
            arr.flags.writeable = False

        self._x = x_arr
        self._y = y_arr
        self._z = z_arr
        self._attributes = attrs
        self._crs = _check_crs(crs)
        self._extent = Extent.from_xy(x_arr, y_arr)

    @property
    def x(self) -> NDArrayNum:
        return self._x

    @property
    def y(self) -> NDArrayNum:
        return self._y

    @property
    def z(self) -> NDArrayNum:
        return self._z

    @property
    def crs(self) -> str | None:
        return self._crs

    @property
    def extent(self) -> Extent | None:
        """Tight bounding extent of all points, None for an empty point set."""
        return self._extent

    @property
    def attribute_names(self) -> list[str]:
        return list(self._attributes)

    @property
    def attributes(self) -> dict[str, NDArrayNum]:
        return dict(self._attributes)

    def attribute(self, name: str) -> NDArrayNum:
        """Get the values of a coordinate ("x", "y", "z") or an attribute for all points."""
        if name in _COORDINATES:
            return getattr(self, name)
        if name not in self._attributes:
            raise KeyError(f"Unknown point attribute {name!r}. Available: {list(_COORDINATES) + self.attribute_names}")
        return self._attributes[name]

    def __len__(self) -> int:
        return len(self._x)

    def __getitem__(self, index: int) -> Point:
        return Point(
            x=float(self._x[index]),
            y=float(self._y[index]),
            z=float(self._z[index]),
            attributes={name: float(values[index]) for name, values in self._attributes.items()},
        )

    def __iter__(self) -> Iterator[Point]:
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        return f"PointSet(n={len(self)}, extent={self.extent}, crs={self.crs!r}, attributes={self.attribute_names})"

    def subset(self, selection: NDArrayBool | NDArrayNum | slice) -> PointSet:
        """
        Select points by boolean mask or integer indices, preserving input order.

        :param selection: Boolean mask of the same length as the point set, or array of indices.

        :return: New point set of the selected points.
        """
        return PointSet(
            x=self._x[selection],
            y=self._y[selection],
            z=self._z[selection],
            attributes={name: values[selection] for name, values in self._attributes.items()},
            crs=self._crs,
        )

    def with_z(self, z: ArrayLike) -> PointSet:
        """Copy of the point set with new Z values (e.g., heights after normalization)."""
        return PointSet(x=self._x, y=self._y, z=z, attributes=self._attributes, crs=self._crs)

    def append(self, other: PointSet) -> PointSet:
        """
        Concatenate another point set after this one.

        Both point sets must share the same CRS tag (or have none) and the same attributes.
        """
        if self.crs is not None and other.crs is not None and self.crs != other.crs:
            raise ValueError(f"Cannot append point sets with different CRS tags: {self.crs!r} and {other.crs!r}.")
        if set(self.attribute_names) != set(other.attribute_names):
            raise ValueError(
                f"Cannot append point sets with different attributes: {self.attribute_names} and "
                f"{other.attribute_names}."
            )
        return PointSet(
            x=np.concatenate([self._x, other.x]),
            y=np.concatenate([self._y, other.y]),
            z=np.concatenate([self._z, other.z]),
            attributes={
                name: np.concatenate([values, other.attribute(name)]) for name, values in self._attributes.items()
            },
            crs=self.crs if self.crs is not None else other.crs,
        )

    @classmethod
    def empty(cls, crs: Any = None, attribute_names: Iterable[str] = ()) -> PointSet:
        """Create an empty point set."""
        return cls([], [], [], attributes={name: [] for name in attribute_names}, crs=crs)

    @classmethod
    def from_xyz(cls, x: ArrayLike, y: ArrayLike, z: ArrayLike, crs: Any = None, **attributes: ArrayLike) -> PointSet:
        """
        Create a point set from X/Y/Z arrays, with attributes passed as keyword arguments.

        :param x: X coordinates.
        :param y: Y coordinates.
        :param z: Z coordinates.
        :param crs: Coordinate reference system tag.
        :param attributes: Per-point attribute arrays (e.g., intensity=..., classification=...).
        """
        return cls(x, y, z, attributes=attributes, crs=crs)

    @classmethod
    def from_points(cls, points: Iterable[Point], crs: Any = None) -> PointSet:
        """
        Create a point set from a sequence of Point objects.

        All points must define the same attribute names.
        """
        points = list(points)
        if len(points) == 0:
            return cls.empty(crs=crs)

        names = list(points[0].attributes)
        for p in points:
            if set(p.attributes) != set(names):
                raise ValueError(f"All points must define the same attributes, got {names} and {list(p.attributes)}.")

        return cls(
            x=[p.x for p in points],
            y=[p.y for p in points],
            z=[p.z for p in points],
            attributes={name: [p.attributes[name] for p in points] for name in names},
            crs=crs,
        )

    @classmethod
    def from_geodataframe(cls, gdf: gpd.GeoDataFrame, z_column: str | None = None, crs: Any = None) -> PointSet:
        """
        Create a point set from a geodataframe of point geometries.

        Numeric columns other than the Z column are loaded as attributes.

        :param gdf: Geodataframe with point geometries.
        :param z_column: Column to use as Z. If not defined, the Z coordinate of 3D geometries is used.
        :param crs: Override of the coordinate reference system tag. Defaults to that of the geodataframe.
        """

        if not all(gdf.geometry.geom_type == "Point"):
            raise ValueError("Geodataframe must only contain point geometries.")

        if z_column is not None:
            z = gdf[z_column].values
        elif gdf.geometry.has_z.all():
            z = gdf.geometry.z.values
        else:
            raise ValueError("Point geometries are 2D: a 'z_column' must be provided.")

        attributes = {
            c: gdf[c].values
            for c in gdf.columns
            if c != gdf.geometry.name and c != z_column and np.issubdtype(gdf[c].dtype, np.number)
        }

        if crs is None:
            crs = gdf.crs

        return cls(gdf.geometry.x.values, gdf.geometry.y.values, z, attributes=attributes, crs=crs)

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """Convert the point set to a geodataframe of 3D point geometries, with attributes as columns."""
        return gpd.GeoDataFrame(
            data=self.attributes,
            geometry=gpd.points_from_xy(x=self._x, y=self._y, z=self._z),
            crs=self._crs,
        )


