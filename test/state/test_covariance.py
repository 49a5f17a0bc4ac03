################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for covariance utilities."""

from __future__ import annotations

import numpy as np
import pytest

from robust_magcal.state.covariance import Covariance
from robust_magcal.state.covariance import CovarianceError


def test_covariance_rejects_non_symmetric() -> None:
    """Ensure non-symmetric covariance matrices raise."""
    mat: np.ndarray = np.array(
        [[1.0, 2.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )
    with pytest.raises(CovarianceError):
        Covariance(mat)


def test_covariance_rejects_bad_shapes() -> None:
    """Non-square and non-finite matrices raise."""
    with pytest.raises(CovarianceError):
        Covariance(np.zeros((2, 3), dtype=np.float64))
    with pytest.raises(CovarianceError):
        Covariance(np.array([[np.inf]], dtype=np.float64))


def test_covariance_is_read_only_copy() -> None:
    """The stored matrix is read-only and as_array returns a copy."""
    source: np.ndarray = np.eye(2, dtype=np.float64)
    cov: Covariance = Covariance(source)
    source[0, 0] = 5.0
    assert cov.variance(0) == pytest.approx(1.0)
    assert not cov.P.flags.writeable

    copy: np.ndarray = cov.as_array()
    copy[1, 1] = 7.0
    assert cov.variance(1) == pytest.approx(1.0)


def test_propagate_linear_map() -> None:
    """Propagation computes J P J^T."""
    cov: Covariance = Covariance(np.diag(np.array([4.0, 9.0], dtype=np.float64)))
    J: np.ndarray = np.array([[1.0, 0.0], [1.0, 1.0], [0.0, 0.0]], dtype=np.float64)
    out: Covariance = cov.propagate(J)
    expected: np.ndarray = np.array(
        [[4.0, 4.0, 0.0], [4.0, 13.0, 0.0], [0.0, 0.0, 0.0]],
        dtype=np.float64,
    )
    np.testing.assert_allclose(out.as_array(), expected)
    assert out.std(1) == pytest.approx(np.sqrt(13.0))

    with pytest.raises(CovarianceError):
        cov.propagate(np.eye(3, dtype=np.float64))


def test_covariance_psd_checks() -> None:
    """Ensure PSD checks are consistent."""
    cov: Covariance = Covariance(np.eye(3, dtype=np.float64))
    assert cov.is_psd()
    cov.assert_psd()

    bad: Covariance = Covariance(np.diag(np.array([1.0, -0.5, 2.0], dtype=np.float64)))
    assert not bad.is_psd()
    assert bad.std(1) == 0.0
    with pytest.raises(CovarianceError):
        bad.assert_psd()
