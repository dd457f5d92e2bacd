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

"""Setup of default processing configuration of LidarGrid."""

from __future__ import annotations

import configparser
import math
import os
from typing import Any

# The setup is inspired by that of Matplotlib and Geowombat
# https://github.com/matplotlib/matplotlib/blob/main/lib/matplotlib/rcsetup.py
# https://github.com/jgrss/geowombat/blob/main/src/geowombat/config.py

_config_ini_file = os.path.abspath(os.path.join(os.path.dirname(__file__), "config.ini"))

# Validators: to check the format of user inputs


def validate_float(f: float | str | int) -> float:
    """Convert f to ``float`` or raise. NaN is accepted."""
    try:
        return float(f)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Cannot convert {f!r} to float") from e


def validate_positive_float(f: float | str | int) -> float:
    """Convert f to a strictly positive, finite ``float`` or raise."""
    value = validate_float(f)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Expected a strictly positive number, got {f!r}")
    return value


def validate_non_negative_float(f: float | str | int) -> float:
    """Convert f to a non-negative, finite ``float`` or raise."""
    value = validate_float(f)
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"Expected a non-negative number, got {f!r}")
    return value


def validate_positive_int(i: int | str) -> int:
    """Convert i to an ``int`` of at least 1 or raise."""
    try:
        value = int(i)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Cannot convert {i!r} to int") from e
    if value < 1:
        raise ValueError(f"Expected an integer of at least 1, got {i!r}")
    return value


# Map the parameter names with a validating function to check user input
_validators = {
    "nodata": validate_float,
    "k": validate_positive_int,
    "power": validate_positive_float,
    "bucket_density_factor": validate_positive_float,
    "chunk_size": validate_positive_float,
    "buffer": validate_non_negative_float,
    "nb_workers": validate_positive_int,
}


class LidarGridConfigDict(dict):  # type: ignore
    """Class for a LidarGrid config dictionary"""

    def __setitem__(self, k: str, v: Any) -> None:
        """We override setitem to check user input."""

        if k not in _validators:
            raise KeyError(f"Unknown configuration key {k!r}. Available: {list(_validators)}")
        validate_func = _validators[k]
        new_value = validate_func(v)
        super().__setitem__(k, new_value)

    def _set_defaults(self, path_init_file: str) -> None:
        """Set the default values from the configuration file."""

        config_parser = configparser.ConfigParser()
        config_parser.read(path_init_file)

        for section in config_parser.sections():
            for k, v in config_parser[section].items():
                self.__setitem__(k, v)


# Generate default config dictionary
config = LidarGridConfigDict()
config._set_defaults(path_init_file=_config_ini_file)
