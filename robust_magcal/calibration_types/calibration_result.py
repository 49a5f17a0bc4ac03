################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Snapshot of a completed robust calibration."""

from __future__ import annotations

from dataclasses import dataclass

from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibration_types.soft_iron import HARD_IRON_PARAM_NAMES
from robust_magcal.calibration_types.soft_iron import MM_PARAM_NAMES
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.state.covariance import Covariance


@dataclass(frozen=True)
class CalibrationResult:
    """Estimated calibration and its fit statistics.

    Attributes:
        params: Estimated hard-iron bias and soft-iron matrix
        covariance: Parameter covariance in canonical order, or None
        mse_T2: Mean squared field norm residual over the fitted set, tesla^2
        chi_sq: Chi-square statistic of the weighted fit
        inliers_data: Inlier classification of the consensus model
        method: Robust method identifier used for the run
        ground_truth_norm_T: Field norm the calibration was fitted against
        hard_iron_known: Whether the hard-iron bias was fixed during the fit
        common_axis_used: Whether the common-axis constraint was enforced
        iterations: Number of consensus iterations performed
        refined: Whether the refinement stage succeeded
    """

    params: CalibrationParameters
    covariance: Covariance | None
    mse_T2: float
    chi_sq: float
    inliers_data: InliersData
    method: str
    ground_truth_norm_T: float
    hard_iron_known: bool
    common_axis_used: bool
    iterations: int
    refined: bool

    def param_names(self) -> tuple[str, ...]:
        """Return the parameter names matching the covariance layout."""
        if self.hard_iron_known:
            return MM_PARAM_NAMES
        return HARD_IRON_PARAM_NAMES + MM_PARAM_NAMES

    def variance(self, name: str) -> float | None:
        """Return the variance of a named parameter, or None without covariance."""
        if self.covariance is None:
            return None
        names: tuple[str, ...] = self.param_names()
        if name not in names:
            raise KeyError(f"Unknown parameter {name}")
        return self.covariance.variance(names.index(name))

    def std(self, name: str) -> float | None:
        """Return the standard deviation of a named parameter."""
        if self.covariance is None:
            return None
        names: tuple[str, ...] = self.param_names()
        if name not in names:
            raise KeyError(f"Unknown parameter {name}")
        return self.covariance.std(names.index(name))
