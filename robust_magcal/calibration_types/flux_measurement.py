################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Magnetic flux density measurement type for calibration."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from robust_magcal.math_utils.validation import as_vector3


@dataclass(frozen=True)
class FluxMeasurement:
    """Body magnetic flux density sample with an optional noise level.

    Attributes:
        b_meas_T: Measured magnetic flux density in tesla, shape (3,)
        std_T: Measurement standard deviation in tesla, or None if unknown
    """

    b_meas_T: np.ndarray
    std_T: float | None = None

    def __post_init__(self) -> None:
        """Validate fields and coerce the flux density array."""
        b_meas_T: np.ndarray = as_vector3(self.b_meas_T, "b_meas_T")
        b_meas_T.setflags(write=False)
        object.__setattr__(self, "b_meas_T", b_meas_T)

        if self.std_T is not None:
            if isinstance(self.std_T, bool):
                raise ValueError("std_T must be a float")
            std_T: float = float(self.std_T)
            if not math.isfinite(std_T) or std_T < 0.0:
                raise ValueError("std_T must be finite and non-negative")
            object.__setattr__(self, "std_T", std_T)

    def magnitude_T(self) -> float:
        """Return the magnitude of the measured flux density in tesla."""
        return float(np.linalg.norm(self.b_meas_T))

    def sigma_T(self, noise_floor_T: float) -> float:
        """Return the standard deviation, using the noise floor when unknown."""
        if self.std_T is None or self.std_T <= 0.0:
            return float(noise_floor_T)
        return float(self.std_T)
