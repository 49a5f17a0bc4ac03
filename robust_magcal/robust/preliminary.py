################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Candidate models fitted to sampled measurement subsets."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import replace
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.config.calibration_params import LmParams
from robust_magcal.solver.norm_fitter import NormFit
from robust_magcal.solver.norm_fitter import fit_norm_model
from robust_magcal.solver.norm_problem import minimum_measurements


@dataclass(frozen=True)
class ModelSetup:
    """Fixed inputs shared by every fit of one calibration run.

    Attributes:
        ground_truth_norm_T: Known field norm in tesla
        initial: Seed for each fit, its hard iron is held when known
        hard_iron_known: Whether the hard iron is fixed
        common_axis_used: Whether ``Mm`` is constrained upper triangular
        noise_floor_T: Standard deviation used for measurements without one
        solver: Levenberg-Marquardt parameters
    """

    ground_truth_norm_T: float
    initial: CalibrationParameters
    hard_iron_known: bool
    common_axis_used: bool
    noise_floor_T: float
    solver: LmParams

    def minimum_measurements(self) -> int:
        return minimum_measurements(
            hard_iron_known=self.hard_iron_known,
            common_axis_used=self.common_axis_used,
        )

    def seeded_from(self, params: CalibrationParameters) -> ModelSetup:
        """Return a copy seeded from another model."""
        return replace(self, initial=params)

    def fit(
        self,
        measurements: Sequence[FluxMeasurement],
        *,
        keep_covariance: bool = False,
    ) -> NormFit:
        """Fit the model to measurements, raising NumericalFailure on failure."""
        return fit_norm_model(
            measurements,
            self.ground_truth_norm_T,
            self.initial,
            hard_iron_known=self.hard_iron_known,
            common_axis_used=self.common_axis_used,
            noise_floor_T=self.noise_floor_T,
            solver=self.solver,
            keep_covariance=keep_covariance,
        )


def fit_subset(
    setup: ModelSetup,
    measurements: Sequence[FluxMeasurement],
    indices: NDArray[np.int64],
) -> NormFit:
    """Fit a candidate model to the measurements at ``indices``."""
    subset: list[FluxMeasurement] = [measurements[int(i)] for i in indices]
    return setup.fit(subset)
