################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Inlier classification produced by a consensus run."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class InliersData:
    """Per-measurement inlier mask and residuals of the best model.

    Attributes:
        inliers: Boolean mask, True for measurements supporting the model
        residuals_T: Field norm residual of each measurement in tesla
        threshold_T: Threshold used to classify inliers in tesla
    """

    inliers: np.ndarray
    residuals_T: np.ndarray
    threshold_T: float

    def __post_init__(self) -> None:
        """Validate mask and residual arrays."""
        inliers: np.ndarray = np.array(self.inliers, dtype=bool)
        residuals_T: np.ndarray = np.array(self.residuals_T, dtype=np.float64)
        if inliers.ndim != 1:
            raise ValueError("inliers must be one-dimensional")
        if residuals_T.shape != inliers.shape:
            raise ValueError("residuals_T must match the inliers shape")
        inliers.setflags(write=False)
        residuals_T.setflags(write=False)
        object.__setattr__(self, "inliers", inliers)
        object.__setattr__(self, "residuals_T", residuals_T)
        object.__setattr__(self, "threshold_T", float(self.threshold_T))

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inliers))

    def inlier_indices(self) -> np.ndarray:
        """Return the indices of the inlier measurements."""
        return np.flatnonzero(self.inliers)

    def inlier_ratio(self) -> float:
        """Return the fraction of measurements classified as inliers."""
        total: int = int(self.inliers.shape[0])
        if total == 0:
            return 0.0
        return float(self.num_inliers) / float(total)
