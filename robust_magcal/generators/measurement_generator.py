################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Synthetic magnetometer measurements for a field of known norm."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.math_utils.validation import AXES
from robust_magcal.math_utils.validation import require_positive


@dataclass(frozen=True)
class GeneratedMeasurements:
    """Measurements with the ground truth used to produce them.

    Attributes:
        measurements: Distorted measurements in generation order
        b_true_T: True flux densities in tesla, shape (N, 3)
        outliers: True where a measurement was corrupted as an outlier
    """

    measurements: list[FluxMeasurement]
    b_true_T: NDArray[np.float64]
    outliers: NDArray[np.bool_]


def random_directions(rng: np.random.Generator, count: int) -> NDArray[np.float64]:
    """Return ``count`` unit vectors uniformly distributed on the sphere."""
    directions: NDArray[np.float64] = rng.standard_normal((count, AXES))
    norms: NDArray[np.float64] = np.linalg.norm(directions, axis=1, keepdims=True)
    return directions / norms


def random_soft_iron(
    rng: np.random.Generator,
    magnitude: float,
    *,
    common_axis: bool = False,
) -> NDArray[np.float64]:
    """Return an ``Mm`` with entries uniform in ``[-magnitude, magnitude]``."""
    mm: NDArray[np.float64] = rng.uniform(-magnitude, magnitude, (AXES, AXES))
    if common_axis:
        mm = np.triu(mm)
    return mm


def random_hard_iron(
    rng: np.random.Generator,
    magnitude_T: float,
) -> NDArray[np.float64]:
    """Return a hard iron with entries uniform in ``[-magnitude_T, magnitude_T]``."""
    return rng.uniform(-magnitude_T, magnitude_T, AXES)


def generate_measurements(
    params: CalibrationParameters,
    ground_truth_norm_T: float,
    count: int,
    rng: np.random.Generator,
    *,
    noise_std_T: float = 0.0,
    outlier_fraction: float = 0.0,
    outlier_std_T: float = 0.0,
    std_T: float | None = None,
) -> GeneratedMeasurements:
    """Generate measurements of a field of norm ``ground_truth_norm_T``.

    Each true flux density points in a random direction. Measurements are
    distorted by ``params``, then Gaussian noise of ``noise_std_T`` is added.
    A random ``outlier_fraction`` of the measurements additionally receives
    Gaussian noise of ``outlier_std_T``.

    Args:
        params: Calibration applied to the true flux densities
        ground_truth_norm_T: Field norm in tesla
        count: Number of measurements
        rng: Random generator
        noise_std_T: Standard deviation of the noise on every measurement
        outlier_fraction: Fraction of measurements corrupted as outliers
        outlier_std_T: Standard deviation of the outlier corruption
        std_T: Standard deviation reported with each measurement
    """
    norm_T: float = require_positive(ground_truth_norm_T, "ground_truth_norm_T")
    if count < 0:
        raise ValueError("count must be non-negative")
    if not 0.0 <= outlier_fraction <= 1.0:
        raise ValueError("outlier_fraction must be in [0, 1]")
    if noise_std_T < 0.0 or outlier_std_T < 0.0:
        raise ValueError("noise standard deviations must be non-negative")

    b_true_T: NDArray[np.float64] = norm_T * random_directions(rng, count)
    b_meas_T: NDArray[np.float64] = params.hard_iron_T + b_true_T @ params.m_matrix().T
    if noise_std_T > 0.0:
        b_meas_T = b_meas_T + rng.normal(0.0, noise_std_T, (count, AXES))

    outliers: NDArray[np.bool_] = np.zeros(count, dtype=bool)
    num_outliers: int = int(round(outlier_fraction * count))
    if num_outliers > 0:
        outliers[rng.choice(count, size=num_outliers, replace=False)] = True
        b_meas_T[outliers] += rng.normal(0.0, outlier_std_T, (num_outliers, AXES))

    measurements: list[FluxMeasurement] = [
        FluxMeasurement(b_meas_T=row, std_T=std_T) for row in b_meas_T
    ]
    return GeneratedMeasurements(
        measurements=measurements,
        b_true_T=b_true_T,
        outliers=outliers,
    )
