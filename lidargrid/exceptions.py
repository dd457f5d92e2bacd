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

"""Exceptions and warnings raised by LidarGrid."""

from __future__ import annotations

from typing import Any


class LidarGridError(Exception):
    """Base class for all LidarGrid errors."""


class InvalidParameterError(LidarGridError, ValueError):
    """Raised when a processing parameter is out of its valid range."""

    def __init__(self, name: str, value: Any, reason: str | None = None):
        self.name = name
        self.value = value
        self.reason = reason
        message = f"Invalid value for parameter '{name}': {value!r}."
        if reason is not None:
            message += f" {reason}"
        super().__init__(message)

    def __reduce__(self) -> tuple[type, tuple[str, Any, str | None]]:
        # Re-raised from worker processes
        return self.__class__, (self.name, self.value, self.reason)


class InsufficientPointsError(LidarGridError, ValueError):
    """Raised when a query or an interpolation requires points but none are available."""


class DimensionMismatchError(LidarGridError, ValueError):
    """Raised when array or kernel dimensions are incompatible with a grid."""


class TilingCancelledError(LidarGridError, RuntimeError):
    """Raised when a tiled rasterization is cancelled between two chunk dispatches."""


class OutOfBoundsPointWarning(UserWarning):
    """Raised when points are dropped because they lie outside a reference grid (aggregated count)."""
