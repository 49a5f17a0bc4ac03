################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Least-squares formulation of calibration against a known field norm.

Every true flux density has the known norm ``g``. With ``M = I + Mm`` the
residual of a measurement is::

    f = ||M^-1 (b_meas - h)||^2 / g^2 - 1

When the hard iron ``h`` is estimated, the fit uses ``b = M^-1 h / g`` in
its place, which keeps the residual affine in the bias::

    f = ||M^-1 b_meas / g - b||^2 - 1

Residuals are unitless so that the soft-iron entries and the bias share one
scale. Because the norm only observes ``M M^T``, a general matrix carries a
three-dimensional rotational gauge that the covariance treats as having
zero variance.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibration_types.soft_iron import COMMON_AXIS_ZERO_NAMES
from robust_magcal.calibration_types.soft_iron import MM_PARAM_INDICES
from robust_magcal.calibration_types.soft_iron import MM_PARAM_NAMES
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.calibrator.errors import NumericalFailure
from robust_magcal.math_utils.validation import AXES
from robust_magcal.state.covariance import Covariance


# Minimum measurements with a known hard iron, general matrix
MIN_MEASUREMENTS_GENERAL: int = 10

# Minimum measurements with a known hard iron, upper-triangular matrix
MIN_MEASUREMENTS_COMMON_AXIS: int = 7

# Additional measurements required to estimate the hard iron
HARD_IRON_EXTRA_MEASUREMENTS: int = 3

# Units: unitless. Meaning: eigenvalues below this fraction of the largest
# information eigenvalue are treated as unobservable
RANK_TOL: float = 1e-10

# Unobservable rotational degrees of freedom of a general matrix
_GAUGE_DIM: int = 3


def minimum_measurements(*, hard_iron_known: bool, common_axis_used: bool) -> int:
    """Return the minimum number of measurements for a model variant."""
    count: int = (
        MIN_MEASUREMENTS_COMMON_AXIS if common_axis_used else MIN_MEASUREMENTS_GENERAL
    )
    if not hard_iron_known:
        count += HARD_IRON_EXTRA_MEASUREMENTS
    return count


def _free_mm_indices(common_axis_used: bool) -> tuple[int, ...]:
    return tuple(
        index
        for index, name in enumerate(MM_PARAM_NAMES)
        if not (common_axis_used and name in COMMON_AXIS_ZERO_NAMES)
    )


def _inverse(m: NDArray[np.float64]) -> NDArray[np.float64]:
    try:
        inv: NDArray[np.float64] = np.linalg.inv(m)
    except np.linalg.LinAlgError as exc:
        raise NumericalFailure("I + Mm is singular") from exc
    return inv


@dataclass(frozen=True)
class NormProblem:
    """Residual model over a fixed set of measurements.

    Attributes:
        b_meas_T: Measured flux densities in tesla, shape (N, 3)
        ground_truth_norm_T: Known field norm in tesla
        hard_iron_T: Known hard-iron bias in tesla, or None to estimate it
        common_axis_used: Constrain ``Mm`` to be upper triangular
    """

    b_meas_T: NDArray[np.float64]
    ground_truth_norm_T: float
    hard_iron_T: NDArray[np.float64] | None
    common_axis_used: bool

    def __post_init__(self) -> None:
        """Validate measurement shapes and the field norm."""
        b_meas_T: NDArray[np.float64] = np.array(self.b_meas_T, dtype=np.float64)
        if b_meas_T.ndim != 2 or b_meas_T.shape[1] != AXES:
            raise ValueError("b_meas_T must have shape (N, 3)")
        if not np.isfinite(self.ground_truth_norm_T) or self.ground_truth_norm_T <= 0.0:
            raise ValueError("ground_truth_norm_T must be positive")
        object.__setattr__(self, "b_meas_T", b_meas_T)
        object.__setattr__(self, "ground_truth_norm_T", float(self.ground_truth_norm_T))
        if self.hard_iron_T is not None:
            object.__setattr__(
                self,
                "hard_iron_T",
                np.asarray(self.hard_iron_T, dtype=np.float64).reshape(AXES),
            )

    @property
    def hard_iron_known(self) -> bool:
        return self.hard_iron_T is not None

    @property
    def num_measurements(self) -> int:
        return int(self.b_meas_T.shape[0])

    def mm_indices(self) -> tuple[int, ...]:
        """Return the canonical soft-iron indices that are estimated."""
        return _free_mm_indices(self.common_axis_used)

    def bias_dim(self) -> int:
        """Return the number of hard-iron unknowns."""
        return 0 if self.hard_iron_known else AXES

    def num_params(self) -> int:
        """Return the length of the packed parameter vector."""
        return self.bias_dim() + len(self.mm_indices())

    def observable_dim(self) -> int:
        """Return the number of parameters the measurements can determine."""
        if self.common_axis_used:
            return self.num_params()
        return self.num_params() - _GAUGE_DIM

    def pack(self, params: CalibrationParameters) -> NDArray[np.float64]:
        """Return the parameter vector for an initial model."""
        mm_vec: NDArray[np.float64] = params.mm_vector()
        x_mm: NDArray[np.float64] = mm_vec[list(self.mm_indices())]
        if self.hard_iron_known:
            return x_mm

        m: NDArray[np.float64] = params.m_matrix()
        if self.common_axis_used:
            m = np.eye(AXES, dtype=np.float64) + np.triu(params.mm)
        try:
            b: NDArray[np.float64] = np.linalg.solve(m, params.hard_iron_T)
        except np.linalg.LinAlgError as exc:
            raise NumericalFailure("Initial I + Mm is singular") from exc
        return np.concatenate([b / self.ground_truth_norm_T, x_mm])

    def _mm_from(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        mm: NDArray[np.float64] = np.zeros((AXES, AXES), dtype=np.float64)
        offset: int = self.bias_dim()
        for position, index in enumerate(self.mm_indices()):
            row, col = MM_PARAM_INDICES[index]
            mm[row, col] = x[offset + position]
        return mm

    def unpack(self, x: NDArray[np.float64]) -> CalibrationParameters:
        """Return calibration parameters for a parameter vector."""
        mm: NDArray[np.float64] = self._mm_from(x)
        if self.hard_iron_T is not None:
            return CalibrationParameters(hard_iron_T=self.hard_iron_T, mm=mm)

        m: NDArray[np.float64] = np.eye(AXES, dtype=np.float64) + mm
        b: NDArray[np.float64] = x[:AXES]
        return CalibrationParameters(
            hard_iron_T=self.ground_truth_norm_T * (m @ b),
            mm=mm,
        )

    def sigma(self, std_T: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return residual standard deviations for measurement deviations."""
        return 2.0 * np.asarray(std_T, dtype=np.float64) / self.ground_truth_norm_T

    def residuals(
        self,
        x: NDArray[np.float64],
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return residuals and their Jacobian with respect to ``x``."""
        mm: NDArray[np.float64] = self._mm_from(x)
        A: NDArray[np.float64] = _inverse(np.eye(AXES, dtype=np.float64) + mm)

        g: float = self.ground_truth_norm_T
        if self.hard_iron_T is not None:
            y: NDArray[np.float64] = (self.b_meas_T - self.hard_iron_T) / g
            u: NDArray[np.float64] = y @ A.T
            z: NDArray[np.float64] = u
        else:
            y = self.b_meas_T / g
            u = y @ A.T
            z = u - x[:AXES]

        f: NDArray[np.float64] = np.sum(z * z, axis=1) - 1.0

        # df/dM_jk = -2 (A^T z)_j (A y)_k
        w: NDArray[np.float64] = z @ A
        d_m: NDArray[np.float64] = -2.0 * w[:, :, np.newaxis] * u[:, np.newaxis, :]

        columns: list[NDArray[np.float64]] = []
        if not self.hard_iron_known:
            columns.append(-2.0 * z)
        for index in self.mm_indices():
            row, col = MM_PARAM_INDICES[index]
            columns.append(d_m[:, row, col][:, np.newaxis])
        J: NDArray[np.float64] = np.hstack(columns)
        return f, J

    def covariance(
        self,
        x: NDArray[np.float64],
        information: NDArray[np.float64],
    ) -> Covariance:
        """Return the canonical-order covariance of the estimated parameters.

        The canonical order is ``sx, sy, sz, mxy, mxz, myx, myz, mzx, mzy``,
        preceded by ``bx, by, bz`` in tesla when the hard iron is estimated.
        Entries fixed by the common-axis constraint have zero rows and
        columns.
        """
        P_internal: NDArray[np.float64] = observable_inverse(
            information,
            self.observable_dim(),
        )

        n_mm: int = len(MM_PARAM_NAMES)
        n_out: int = self.bias_dim() + n_mm
        J: NDArray[np.float64] = np.zeros((n_out, self.num_params()), dtype=np.float64)
        offset: int = self.bias_dim()
        for position, index in enumerate(self.mm_indices()):
            J[offset + index, offset + position] = 1.0

        if not self.hard_iron_known:
            g: float = self.ground_truth_norm_T
            mm: NDArray[np.float64] = self._mm_from(x)
            m: NDArray[np.float64] = np.eye(AXES, dtype=np.float64) + mm
            b: NDArray[np.float64] = x[:AXES]
            # h = g M b
            J[:AXES, :AXES] = g * m
            for position, index in enumerate(self.mm_indices()):
                row, col = MM_PARAM_INDICES[index]
                J[row, offset + position] = g * b[col]

        return Covariance(P_internal).propagate(J)


def information_rank(information: NDArray[np.float64]) -> int:
    """Return the numerical rank of a symmetric information matrix."""
    eigvals: NDArray[np.float64] = np.linalg.eigvalsh(information)
    largest: float = float(np.max(eigvals)) if eigvals.size else 0.0
    if largest <= 0.0:
        return 0
    return int(np.count_nonzero(eigvals > RANK_TOL * largest))


def observable_inverse(
    information: NDArray[np.float64],
    observable_dim: int,
) -> NDArray[np.float64]:
    """Invert an information matrix on its ``observable_dim`` leading modes."""
    eigvals, eigvecs = np.linalg.eigh(information)
    keep: NDArray[np.float64] = eigvals[-observable_dim:]
    basis: NDArray[np.float64] = eigvecs[:, -observable_dim:]
    if keep.size == 0 or float(keep[0]) <= RANK_TOL * float(eigvals[-1]):
        raise NumericalFailure("Information matrix is rank deficient")
    P: NDArray[np.float64] = (basis / keep) @ basis.T
    return 0.5 * (P + P.T)
