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
LidarGrid is a Python package for rasterizing point clouds on regular grids and applying focal operations on them.
"""

from lidargrid._config import config  # noqa

from lidargrid.pointset import Extent, Point, PointSet  # noqa isort:skip
from lidargrid.grid import Grid, GridGeometry  # noqa isort:skip
from lidargrid.spatial_index import SpatialIndex  # noqa isort:skip
from lidargrid.interpolation import KNNInterpolator, interpolate  # noqa isort:skip
from lidargrid.rasterize import rasterize  # noqa isort:skip
from lidargrid.tiling import Chunk, TileManager, TilingConfig, normalize, rasterize_tiled  # noqa isort:skip
from lidargrid.focal import FocalWindow, Kernel  # noqa isort:skip
from lidargrid import focal, products, reducers  # noqa isort:skip

try:
    from lidargrid._version import __version__ as __version__  # noqa
except ImportError:  # pragma: no cover
    raise ImportError(
        "lidargrid is not properly installed. If you are "
        "running from the source directory, please instead "
        "create a new virtual environment (using conda or "
        "virtualenv) and then install it in-place by running: "
        "pip install -e ."
    )
