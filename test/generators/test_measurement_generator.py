################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for synthetic measurement generation."""

from __future__ import annotations

import numpy as np
import pytest

from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.generators.measurement_generator import GeneratedMeasurements
from robust_magcal.generators.measurement_generator import generate_measurements
from robust_magcal.generators.measurement_generator import random_directions
from robust_magcal.generators.measurement_generator import random_hard_iron
from robust_magcal.generators.measurement_generator import random_soft_iron


NORM_T: float = 5e-5


def test_random_directions_are_unit() -> None:
    """Directions lie on the unit sphere."""
    rng: np.random.Generator = np.random.default_rng(70)
    directions: np.ndarray = random_directions(rng, 50)
    assert directions.shape == (50, 3)
    np.testing.assert_allclose(np.linalg.norm(directions, axis=1), np.ones(50))


def test_random_parameters_respect_bounds() -> None:
    """Random soft and hard iron stay within their magnitudes."""
    rng: np.random.Generator = np.random.default_rng(71)
    mm: np.ndarray = random_soft_iron(rng, 0.05)
    assert np.all(np.abs(mm) <= 0.05)
    upper: np.ndarray = random_soft_iron(rng, 0.05, common_axis=True)
    np.testing.assert_array_equal(upper, np.triu(upper))
    hard_iron_T: np.ndarray = random_hard_iron(rng, 1e-5)
    assert hard_iron_T.shape == (3,)
    assert np.all(np.abs(hard_iron_T) <= 1e-5)


def test_noise_free_measurements_follow_the_model() -> None:
    """Correcting noise-free measurements recovers the field norm."""
    rng: np.random.Generator = np.random.default_rng(72)
    params: CalibrationParameters = CalibrationParameters(
        hard_iron_T=random_hard_iron(rng, 1e-5),
        mm=random_soft_iron(rng, 0.05),
    )
    data: GeneratedMeasurements = generate_measurements(
        params, NORM_T, 20, rng, std_T=1e-8
    )
    assert len(data.measurements) == 20
    assert not np.any(data.outliers)
    np.testing.assert_allclose(
        np.linalg.norm(data.b_true_T, axis=1), np.full(20, NORM_T)
    )
    for measurement, b_true_T in zip(data.measurements, data.b_true_T):
        assert measurement.std_T == 1e-8
        np.testing.assert_allclose(
            params.correct(measurement.b_meas_T), b_true_T, atol=1e-18
        )


def test_outliers_are_marked() -> None:
    """The requested fraction of measurements is corrupted."""
    rng: np.random.Generator = np.random.default_rng(73)
    data: GeneratedMeasurements = generate_measurements(
        CalibrationParameters.identity(),
        NORM_T,
        50,
        rng,
        outlier_fraction=0.04,
        outlier_std_T=1e-5,
    )
    assert int(np.count_nonzero(data.outliers)) == 2
    norms: np.ndarray = np.array([m.magnitude_T() for m in data.measurements])
    np.testing.assert_allclose(norms[~data.outliers], NORM_T)
    assert np.all(np.abs(norms[data.outliers] - NORM_T) > 0.0)


def test_invalid_arguments() -> None:
    """Invalid sizes and fractions raise ValueError."""
    rng: np.random.Generator = np.random.default_rng(74)
    params: CalibrationParameters = CalibrationParameters.identity()
    with pytest.raises(ValueError):
        generate_measurements(params, 0.0, 10, rng)
    with pytest.raises(ValueError):
        generate_measurements(params, NORM_T, -1, rng)
    with pytest.raises(ValueError):
        generate_measurements(params, NORM_T, 10, rng, outlier_fraction=1.5)
    with pytest.raises(ValueError):
        generate_measurements(params, NORM_T, 10, rng, noise_std_T=-1.0)
