################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Public data types for robust magnetometer calibration."""

from __future__ import annotations

from robust_magcal.calibration_types.calibration_result import CalibrationResult
from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.calibration_types.soft_iron import SingularModelError


__all__ = [
    "CalibrationParameters",
    "CalibrationResult",
    "FluxMeasurement",
    "InliersData",
    "SingularModelError",
]
