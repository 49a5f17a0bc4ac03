################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Hard-iron and soft-iron calibration parameters.

The magnetometer model is::

    b_meas = b + (I + Mm) b_true

where ``b`` is the hard-iron bias in tesla and ``Mm`` is the unitless
soft-iron matrix holding scaling factors on the diagonal and cross-coupling
errors elsewhere::

    Mm = [sx   mxy  mxz]
         [myx  sy   myz]
         [mzx  mzy  sz ]

When the sensor axes share a common z-axis with the body, ``myx``, ``mzx``
and ``mzy`` are zero and ``Mm`` is upper triangular.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from robust_magcal.math_utils.validation import as_matrix3
from robust_magcal.math_utils.validation import as_vector3


# Names of the soft-iron entries in canonical covariance order
MM_PARAM_NAMES: tuple[str, ...] = (
    "sx",
    "sy",
    "sz",
    "mxy",
    "mxz",
    "myx",
    "myz",
    "mzx",
    "mzy",
)

# (row, col) of each canonical soft-iron entry within Mm
MM_PARAM_INDICES: tuple[tuple[int, int], ...] = (
    (0, 0),
    (1, 1),
    (2, 2),
    (0, 1),
    (0, 2),
    (1, 0),
    (1, 2),
    (2, 0),
    (2, 1),
)

# Canonical names of the entries forced to zero by the common-axis constraint
COMMON_AXIS_ZERO_NAMES: tuple[str, ...] = ("myx", "mzx", "mzy")

# Names of the hard-iron entries in canonical covariance order
HARD_IRON_PARAM_NAMES: tuple[str, ...] = ("bx", "by", "bz")


class SingularModelError(Exception):
    """Raised when the soft-iron model cannot be inverted."""


@dataclass(frozen=True)
class CalibrationParameters:
    """Hard-iron bias and soft-iron matrix of a magnetometer.

    Attributes:
        hard_iron_T: Hard-iron bias in tesla, shape (3,)
        mm: Soft-iron scaling and cross-coupling matrix, shape (3, 3)
    """

    hard_iron_T: np.ndarray
    mm: np.ndarray

    def __post_init__(self) -> None:
        """Validate and coerce parameter arrays."""
        hard_iron_T: np.ndarray = as_vector3(self.hard_iron_T, "hard_iron_T")
        mm: np.ndarray = as_matrix3(self.mm, "mm")
        hard_iron_T.setflags(write=False)
        mm.setflags(write=False)
        object.__setattr__(self, "hard_iron_T", hard_iron_T)
        object.__setattr__(self, "mm", mm)

    @classmethod
    def identity(cls) -> CalibrationParameters:
        """Return parameters of an ideal sensor."""
        return cls(
            hard_iron_T=np.zeros(3, dtype=np.float64),
            mm=np.zeros((3, 3), dtype=np.float64),
        )

    @classmethod
    def from_components(
        cls,
        *,
        sx: float = 0.0,
        sy: float = 0.0,
        sz: float = 0.0,
        mxy: float = 0.0,
        mxz: float = 0.0,
        myx: float = 0.0,
        myz: float = 0.0,
        mzx: float = 0.0,
        mzy: float = 0.0,
        hard_iron_T: NDArray[np.float64] | None = None,
    ) -> CalibrationParameters:
        """Build parameters from individual scaling and cross-coupling terms."""
        mm: NDArray[np.float64] = np.array(
            [
                [sx, mxy, mxz],
                [myx, sy, myz],
                [mzx, mzy, sz],
            ],
            dtype=np.float64,
        )
        if hard_iron_T is None:
            hard_iron_T = np.zeros(3, dtype=np.float64)
        return cls(hard_iron_T=hard_iron_T, mm=mm)

    @property
    def sx(self) -> float:
        return float(self.mm[0, 0])

    @property
    def sy(self) -> float:
        return float(self.mm[1, 1])

    @property
    def sz(self) -> float:
        return float(self.mm[2, 2])

    @property
    def mxy(self) -> float:
        return float(self.mm[0, 1])

    @property
    def mxz(self) -> float:
        return float(self.mm[0, 2])

    @property
    def myx(self) -> float:
        return float(self.mm[1, 0])

    @property
    def myz(self) -> float:
        return float(self.mm[1, 2])

    @property
    def mzx(self) -> float:
        return float(self.mm[2, 0])

    @property
    def mzy(self) -> float:
        return float(self.mm[2, 1])

    def m_matrix(self) -> NDArray[np.float64]:
        """Return the full distortion matrix M = I + Mm."""
        return np.eye(3, dtype=np.float64) + self.mm

    def mm_vector(self) -> NDArray[np.float64]:
        """Return the soft-iron entries in canonical order."""
        return np.array(
            [self.mm[row, col] for row, col in MM_PARAM_INDICES],
            dtype=np.float64,
        )

    def is_common_axis(self, *, atol: float = 0.0) -> bool:
        """Return True if the lower-triangular cross terms are zero."""
        lower: NDArray[np.float64] = np.array(
            [self.myx, self.mzx, self.mzy], dtype=np.float64
        )
        return bool(np.all(np.abs(lower) <= atol))

    def with_common_axis(self) -> CalibrationParameters:
        """Return a copy with the lower-triangular cross terms zeroed."""
        return CalibrationParameters(
            hard_iron_T=self.hard_iron_T,
            mm=np.triu(self.mm),
        )

    def correct(self, b_meas_T: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the true flux density for a measurement, M^-1 (b_meas - b)."""
        b_meas: NDArray[np.float64] = as_vector3(b_meas_T, "b_meas_T")
        try:
            return np.asarray(
                np.linalg.solve(self.m_matrix(), b_meas - self.hard_iron_T),
                dtype=np.float64,
            )
        except np.linalg.LinAlgError as exc:
            raise SingularModelError("I + Mm is singular") from exc

    def distort(self, b_true_T: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the measurement produced by a true flux density."""
        b_true: NDArray[np.float64] = as_vector3(b_true_T, "b_true_T")
        return self.hard_iron_T + self.m_matrix() @ b_true
