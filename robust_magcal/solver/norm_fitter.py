################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Fit a calibration model to a set of measurements with a known field norm."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.calibrator.errors import NumericalFailure
from robust_magcal.config.calibration_params import LmParams
from robust_magcal.robust.residual_scorer import norm_residuals_T
from robust_magcal.solver.levenberg_marquardt import LmResult
from robust_magcal.solver.levenberg_marquardt import solve_weighted
from robust_magcal.solver.norm_problem import NormProblem
from robust_magcal.solver.norm_problem import information_rank
from robust_magcal.state.covariance import Covariance


_LOG: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormFit:
    """Calibration fitted to a set of measurements.

    Attributes:
        params: Estimated calibration parameters
        covariance: Canonical-order parameter covariance, or None if not kept
        chi_sq: Weighted chi-square of the fit
        mse_T2: Mean squared field norm residual in tesla^2
        iterations: Levenberg-Marquardt iterations performed
    """

    params: CalibrationParameters
    covariance: Covariance | None
    chi_sq: float
    mse_T2: float
    iterations: int


def stack_measurements(
    measurements: Sequence[FluxMeasurement],
) -> NDArray[np.float64]:
    """Return the measured flux densities as an (N, 3) array."""
    if len(measurements) == 0:
        return np.zeros((0, 3), dtype=np.float64)
    return np.vstack([measurement.b_meas_T for measurement in measurements])


def fit_norm_model(
    measurements: Sequence[FluxMeasurement],
    ground_truth_norm_T: float,
    initial: CalibrationParameters,
    *,
    hard_iron_known: bool,
    common_axis_used: bool,
    noise_floor_T: float,
    solver: LmParams | None = None,
    keep_covariance: bool = False,
) -> NormFit:
    """Fit hard and soft iron to measurements of a field of known norm.

    The fit is seeded from ``initial``. When ``hard_iron_known`` is set, the
    hard iron of ``initial`` is held fixed.

    Raises:
        NumericalFailure: If the measurements are degenerate, the model
            becomes singular, or the solver does not converge
    """
    problem: NormProblem = NormProblem(
        b_meas_T=stack_measurements(measurements),
        ground_truth_norm_T=ground_truth_norm_T,
        hard_iron_T=initial.hard_iron_T if hard_iron_known else None,
        common_axis_used=common_axis_used,
    )
    if problem.num_measurements < problem.observable_dim():
        raise NumericalFailure("Not enough measurements for the model")

    std_T: NDArray[np.float64] = np.array(
        [measurement.sigma_T(noise_floor_T) for measurement in measurements],
        dtype=np.float64,
    )

    x0: NDArray[np.float64] = problem.pack(initial)
    result: LmResult = solve_weighted(
        problem.residuals,
        x0,
        problem.sigma(std_T),
        solver,
    )
    if not result.converged:
        raise NumericalFailure(
            f"Solver did not converge in {result.iterations} iterations"
        )
    if information_rank(result.information) < problem.observable_dim():
        raise NumericalFailure("Measurements do not constrain the model")

    params: CalibrationParameters = problem.unpack(result.x)
    residuals_T: NDArray[np.float64] = norm_residuals_T(
        params, problem.b_meas_T, ground_truth_norm_T
    )
    mse_T2: float = float(np.mean(np.square(residuals_T)))

    covariance: Covariance | None = None
    if keep_covariance:
        covariance = problem.covariance(result.x, result.information)

    _LOG.debug(
        "Fitted %d measurements in %d iterations, chi_sq=%.3e",
        problem.num_measurements,
        result.iterations,
        result.chi_sq,
    )
    return NormFit(
        params=params,
        covariance=covariance,
        chi_sq=result.chi_sq,
        mse_T2=mse_T2,
        iterations=result.iterations,
    )
