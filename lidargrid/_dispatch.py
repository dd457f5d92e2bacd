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

"""Functions for consistent input checks."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

import numpy as np
import rasterio as rio

from lidargrid._config import config
from lidargrid._typing import Number
from lidargrid.exceptions import InvalidParameterError

# Level 0 checks: directly on user input
########################################


def _check_positive(name: str, value: Any) -> float:
    """Check that a parameter is a finite, strictly positive number."""

    try:
        value_f = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidParameterError(name, value, "Expected a number.") from e
    if not math.isfinite(value_f) or value_f <= 0:
        raise InvalidParameterError(name, value, "Must be strictly positive.")
    return value_f


def _check_non_negative(name: str, value: Any) -> float:
    """Check that a parameter is a finite, non-negative number."""

    try:
        value_f = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidParameterError(name, value, "Expected a number.") from e
    if not math.isfinite(value_f) or value_f < 0:
        raise InvalidParameterError(name, value, "Must be non-negative.")
    return value_f


def _check_k(k: Any) -> int:
    """Check the number of neighbours of a k-nearest neighbour query."""

    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise InvalidParameterError("k", k, "Must be an integer of at least 1.")
    return int(k)


def _check_idw_params(k: int | None, power: float | None) -> tuple[int, float]:
    """Check inverse-distance weighting parameters, falling back on the global configuration."""

    if k is None:
        k = config["k"]
    if power is None:
        power = config["power"]

    return _check_k(k), _check_positive("power", power)


def _check_nodata(nodata: Number | None) -> float:
    """Check the no-data sentinel, falling back on the global configuration."""

    if nodata is None:
        return float(config["nodata"])
    try:
        return float(nodata)
    except (TypeError, ValueError) as e:
        raise InvalidParameterError("nodata", nodata, "Expected a number or NaN.") from e


def _check_crs(crs: Any) -> str | None:
    """
    Normalize a coordinate reference system to its opaque string tag.

    The CRS is carried through, never interpreted: objects implementing "to_string" (pyproj, rasterio) are converted,
    integers are read as EPSG codes and strings are kept as is.
    """

    if crs is None:
        return None
    if isinstance(crs, str):
        return crs
    if isinstance(crs, int) and not isinstance(crs, bool):
        return f"EPSG:{crs}"
    if hasattr(crs, "to_string"):
        return str(crs.to_string())

    raise InvalidParameterError("crs", crs, "Expected a string tag, an EPSG code or a CRS object.")


def _check_extent(bbox: Any) -> tuple[float, float, float, float]:
    """Helper function to check extent value when provided as a sequence or bounding box object."""

    if isinstance(bbox, rio.coords.BoundingBox):
        xmin, ymin, xmax, ymax = bbox.left, bbox.bottom, bbox.right, bbox.top

    elif isinstance(bbox, Sequence) and not isinstance(bbox, (str, bytes)) and len(bbox) == 4:
        xmin, ymin, xmax, ymax = (float(b) for b in bbox)

    else:
        raise InvalidParameterError(
            "extent",
            bbox,
            "Expected an Extent, a rasterio BoundingBox or a sequence of four numbers (xmin, ymin, xmax, ymax).",
        )

    if not all(math.isfinite(b) for b in (xmin, ymin, xmax, ymax)):
        raise InvalidParameterError("extent", bbox, "All bounds must be finite.")
    if xmin > xmax or ymin > ymax:
        raise InvalidParameterError("extent", bbox, "Minimum bounds must not exceed maximum bounds.")

    return float(xmin), float(ymin), float(xmax), float(ymax)
