################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for fitting a calibration to a known field norm."""

from __future__ import annotations

import numpy as np
import pytest

from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.calibrator.errors import NumericalFailure
from robust_magcal.generators.measurement_generator import GeneratedMeasurements
from robust_magcal.generators.measurement_generator import generate_measurements
from robust_magcal.generators.measurement_generator import random_hard_iron
from robust_magcal.generators.measurement_generator import random_soft_iron
from robust_magcal.solver.norm_fitter import NormFit
from robust_magcal.solver.norm_fitter import fit_norm_model
from robust_magcal.solver.norm_fitter import stack_measurements


NORM_T: float = 5e-5

NOISE_FLOOR_T: float = 1e-7


def _truth(rng: np.random.Generator, *, common_axis: bool) -> CalibrationParameters:
    return CalibrationParameters(
        hard_iron_T=random_hard_iron(rng, 1e-5),
        mm=random_soft_iron(rng, 0.05, common_axis=common_axis),
    )


def test_stack_measurements() -> None:
    """Measurements stack into an (N, 3) array."""
    stacked: np.ndarray = stack_measurements(
        [FluxMeasurement([1.0, 2.0, 3.0]), FluxMeasurement([4.0, 5.0, 6.0])]
    )
    np.testing.assert_allclose(stacked, np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]))
    assert stack_measurements([]).shape == (0, 3)


def test_common_axis_fit_from_identity() -> None:
    """An upper-triangular matrix is recovered from an identity start."""
    rng: np.random.Generator = np.random.default_rng(10)
    truth: CalibrationParameters = _truth(rng, common_axis=True)
    data: GeneratedMeasurements = generate_measurements(truth, NORM_T, 7, rng)

    fit: NormFit = fit_norm_model(
        data.measurements,
        NORM_T,
        CalibrationParameters(
            hard_iron_T=truth.hard_iron_T, mm=np.zeros((3, 3), dtype=np.float64)
        ),
        hard_iron_known=True,
        common_axis_used=True,
        noise_floor_T=NOISE_FLOOR_T,
        keep_covariance=True,
    )
    np.testing.assert_allclose(fit.params.mm, truth.mm, atol=1e-9)
    np.testing.assert_allclose(fit.params.hard_iron_T, truth.hard_iron_T)
    assert fit.mse_T2 >= 0.0
    assert fit.mse_T2 < 1e-24
    assert fit.covariance is not None
    assert fit.covariance.dim() == 9


def test_general_fit_preserves_norms() -> None:
    """A general matrix fitted from identity reproduces the field norm."""
    rng: np.random.Generator = np.random.default_rng(11)
    truth: CalibrationParameters = _truth(rng, common_axis=False)
    data: GeneratedMeasurements = generate_measurements(truth, NORM_T, 30, rng)

    fit: NormFit = fit_norm_model(
        data.measurements,
        NORM_T,
        CalibrationParameters(
            hard_iron_T=truth.hard_iron_T, mm=np.zeros((3, 3), dtype=np.float64)
        ),
        hard_iron_known=True,
        common_axis_used=False,
        noise_floor_T=NOISE_FLOOR_T,
    )
    m_fit: np.ndarray = fit.params.m_matrix()
    m_true: np.ndarray = truth.m_matrix()
    np.testing.assert_allclose(m_fit @ m_fit.T, m_true @ m_true.T, atol=1e-9)
    assert fit.covariance is None


def test_hard_iron_is_estimated() -> None:
    """The hard iron is recovered when it is not held fixed."""
    rng: np.random.Generator = np.random.default_rng(12)
    truth: CalibrationParameters = _truth(rng, common_axis=True)
    data: GeneratedMeasurements = generate_measurements(truth, NORM_T, 40, rng)

    fit: NormFit = fit_norm_model(
        data.measurements,
        NORM_T,
        CalibrationParameters.identity(),
        hard_iron_known=False,
        common_axis_used=True,
        noise_floor_T=NOISE_FLOOR_T,
        keep_covariance=True,
    )
    np.testing.assert_allclose(fit.params.hard_iron_T, truth.hard_iron_T, atol=1e-14)
    np.testing.assert_allclose(fit.params.mm, truth.mm, atol=1e-9)
    assert fit.covariance is not None
    assert fit.covariance.dim() == 12


def test_too_few_measurements_raise() -> None:
    """Fewer measurements than observable parameters cannot be fitted."""
    rng: np.random.Generator = np.random.default_rng(13)
    truth: CalibrationParameters = _truth(rng, common_axis=True)
    data: GeneratedMeasurements = generate_measurements(truth, NORM_T, 5, rng)
    with pytest.raises(NumericalFailure):
        fit_norm_model(
            data.measurements,
            NORM_T,
            truth,
            hard_iron_known=True,
            common_axis_used=True,
            noise_floor_T=NOISE_FLOOR_T,
        )


def test_degenerate_measurements_raise() -> None:
    """Repeated measurements do not constrain the matrix."""
    measurement: FluxMeasurement = FluxMeasurement([NORM_T, 0.0, 0.0])
    with pytest.raises(NumericalFailure):
        fit_norm_model(
            [measurement] * 10,
            NORM_T,
            CalibrationParameters.identity(),
            hard_iron_known=True,
            common_axis_used=False,
            noise_floor_T=NOISE_FLOOR_T,
        )
