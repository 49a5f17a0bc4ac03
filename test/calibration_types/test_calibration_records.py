################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for measurement, inlier and result types."""

from __future__ import annotations

import numpy as np
import pytest

from robust_magcal.calibration_types.calibration_result import CalibrationResult
from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.state.covariance import Covariance


def test_flux_measurement_coercion() -> None:
    """Measurements coerce to read-only float arrays."""
    measurement: FluxMeasurement = FluxMeasurement(b_meas_T=[3e-5, 4e-5, 0.0])
    assert measurement.b_meas_T.dtype == np.float64
    assert not measurement.b_meas_T.flags.writeable
    assert measurement.magnitude_T() == pytest.approx(5e-5)
    assert measurement.std_T is None


def test_flux_measurement_sigma_fallback() -> None:
    """Missing or zero deviations fall back to the noise floor."""
    floor_T: float = 1e-7
    assert FluxMeasurement([0.0, 0.0, 1e-5]).sigma_T(floor_T) == floor_T
    assert FluxMeasurement([0.0, 0.0, 1e-5], std_T=0.0).sigma_T(floor_T) == floor_T
    assert FluxMeasurement([0.0, 0.0, 1e-5], std_T=2e-8).sigma_T(floor_T) == 2e-8


@pytest.mark.parametrize("std_T", [-1.0, float("inf"), True])
def test_flux_measurement_rejects_bad_std(std_T: float) -> None:
    """Negative, infinite or boolean deviations are rejected."""
    with pytest.raises(ValueError):
        FluxMeasurement([0.0, 0.0, 1e-5], std_T=std_T)


def test_flux_measurement_rejects_bad_shape() -> None:
    """Vectors must hold three components."""
    with pytest.raises(ValueError):
        FluxMeasurement([1e-5, 0.0])
    with pytest.raises(ValueError):
        FluxMeasurement("abc")


def test_inliers_data_counts() -> None:
    """Inlier counts, indices and ratio follow the mask."""
    data: InliersData = InliersData(
        inliers=[True, False, True, True],
        residuals_T=[0.0, 1e-6, 1e-10, 2e-10],
        threshold_T=1e-9,
    )
    assert data.num_inliers == 3
    np.testing.assert_array_equal(data.inlier_indices(), np.array([0, 2, 3]))
    assert data.inlier_ratio() == pytest.approx(0.75)
    assert not data.inliers.flags.writeable


def test_inliers_data_rejects_mismatch() -> None:
    """Mask and residuals must have the same length."""
    with pytest.raises(ValueError):
        InliersData(inliers=[True, False], residuals_T=[0.0], threshold_T=1e-9)


def test_empty_inliers_ratio_is_zero() -> None:
    """An empty classification has no inliers."""
    data: InliersData = InliersData(inliers=[], residuals_T=[], threshold_T=1e-9)
    assert data.inlier_ratio() == 0.0


def _result(hard_iron_known: bool, covariance: Covariance | None) -> CalibrationResult:
    return CalibrationResult(
        params=CalibrationParameters.identity(),
        covariance=covariance,
        mse_T2=0.0,
        chi_sq=0.0,
        inliers_data=InliersData(inliers=[True], residuals_T=[0.0], threshold_T=1e-9),
        method="msac",
        ground_truth_norm_T=5e-5,
        hard_iron_known=hard_iron_known,
        common_axis_used=False,
        iterations=1,
        refined=True,
    )


def test_result_named_variances() -> None:
    """Variances are looked up by canonical parameter name."""
    diag: np.ndarray = np.arange(1.0, 13.0, dtype=np.float64)
    result: CalibrationResult = _result(False, Covariance(np.diag(diag)))
    assert result.param_names()[:4] == ("bx", "by", "bz", "sx")
    assert result.variance("bx") == pytest.approx(1.0)
    assert result.variance("mzy") == pytest.approx(12.0)
    assert result.std("sz") == pytest.approx(np.sqrt(6.0))
    with pytest.raises(KeyError):
        result.variance("bw")


def test_result_without_covariance() -> None:
    """Results without covariance report no variances."""
    result: CalibrationResult = _result(True, None)
    assert result.param_names()[0] == "sx"
    assert result.variance("sx") is None
    assert result.std("sx") is None
