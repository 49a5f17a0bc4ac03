################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Field norm residuals and robust scores for candidate models."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.calibrator.errors import NumericalFailure


# Units: unitless. Meaning: consistency factor of the median absolute deviation
LMEDS_MAD_SCALE: float = 1.4826

# Units: unitless. Meaning: finite-sample correction numerator of the LMedS scale
LMEDS_SAMPLE_CORRECTION: float = 5.0

# Units: unitless. Meaning: multiple of the robust scale accepted as inlier
LMEDS_INLIER_FACTOR: float = 1.5


def norm_residuals_T(
    params: CalibrationParameters,
    b_meas_T: NDArray[np.float64],
    ground_truth_norm_T: float,
) -> NDArray[np.float64]:
    """Return ``| ||M^-1 (b_meas - b)|| - g |`` for every measurement.

    Args:
        params: Candidate calibration
        b_meas_T: Measured flux densities in tesla, shape (N, 3)
        ground_truth_norm_T: Known field norm in tesla

    Raises:
        NumericalFailure: If ``I + Mm`` is singular
    """
    centered: NDArray[np.float64] = np.asarray(b_meas_T, dtype=np.float64)
    centered = centered - params.hard_iron_T
    try:
        corrected: NDArray[np.float64] = np.linalg.solve(
            params.m_matrix(), centered.T
        ).T
    except np.linalg.LinAlgError as exc:
        raise NumericalFailure("I + Mm is singular") from exc
    norms: NDArray[np.float64] = np.linalg.norm(corrected, axis=1)
    return np.abs(norms - ground_truth_norm_T)


def inlier_mask(
    residuals_T: NDArray[np.float64],
    threshold_T: float,
) -> NDArray[np.bool_]:
    """Return True where the residual is within the threshold, inclusive."""
    return np.asarray(residuals_T <= threshold_T, dtype=bool)


def msac_score(residuals_T: NDArray[np.float64], threshold_T: float) -> float:
    """Return the truncated squared loss, lower is better."""
    sq: NDArray[np.float64] = np.square(residuals_T)
    return float(np.sum(np.minimum(sq, threshold_T * threshold_T)))


def median_sq_residual(residuals_T: NDArray[np.float64]) -> float:
    """Return the median of the squared residuals, lower is better."""
    return float(np.median(np.square(residuals_T)))


def lmeds_inlier_threshold(
    median_sq_T2: float,
    num_measurements: int,
    subset_size: int,
    floor_T: float = 0.0,
) -> float:
    """Return the robust inlier threshold of a least-median model.

    The scale estimate follows Rousseeuw's corrected median absolute
    deviation ``1.4826 (1 + 5 / (n - s)) sqrt(median)``. The threshold never
    drops below ``floor_T`` so that noise-free inliers are still accepted.
    """
    dof: int = max(num_measurements - subset_size, 1)
    sigma: float = (
        LMEDS_MAD_SCALE
        * (1.0 + LMEDS_SAMPLE_CORRECTION / float(dof))
        * float(np.sqrt(max(median_sq_T2, 0.0)))
    )
    return max(LMEDS_INLIER_FACTOR * sigma, floor_T)
