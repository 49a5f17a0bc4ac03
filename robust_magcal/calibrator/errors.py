################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Exception hierarchy for robust magnetometer calibration."""

from __future__ import annotations


class MagCalError(Exception):
    """Base class for calibration failures."""


class CalibrationError(MagCalError):
    """Raised when a run cannot produce any valid model."""


class NotReadyError(MagCalError):
    """Raised when calibration is requested without enough input data."""


class LockedError(MagCalError):
    """Raised when the calibrator is modified or re-entered while running."""


class NumericalFailure(MagCalError):
    """Raised when a single model fit fails for numerical reasons."""
