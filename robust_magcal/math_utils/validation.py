################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Validation helpers for magnetometer calibration inputs."""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray


# Number of magnetometer axes
AXES: int = 3


def as_float_array(
    value: Any,
    name: str,
    shape: tuple[int, ...],
) -> NDArray[np.float64]:
    """Return a finite float64 numpy array with a required shape."""
    try:
        array: NDArray[np.float64] = np.array(value, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be numeric") from exc
    if array.shape != shape:
        raise ValueError(f"{name} must have shape {shape}")
    if not np.all(np.isfinite(array)):
        raise ValueError(f"{name} must contain finite values")
    return array


def as_vector3(value: Any, name: str) -> NDArray[np.float64]:
    """Return a 3-vector from a flat sequence or a 3x1 column matrix."""
    if np.shape(value) == (AXES, 1):
        value = np.reshape(value, AXES)
    return as_float_array(value, name, (AXES,))


def as_matrix3(value: Any, name: str) -> NDArray[np.float64]:
    """Return a finite 3x3 matrix."""
    return as_float_array(value, name, (AXES, AXES))


def require_positive(value: float, name: str) -> float:
    """Return the value as a float, requiring it to be finite and positive."""
    result: float = float(value)
    if not np.isfinite(result) or result <= 0.0:
        raise ValueError(f"{name} must be positive")
    return result
