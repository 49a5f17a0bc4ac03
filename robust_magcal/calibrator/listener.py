################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Observer interface for calibration run events."""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from robust_magcal.calibrator.norm_calibrator import (
        RobustNormMagnetometerCalibrator,
    )


class CalibratorListener:
    """Receives run notifications from a calibrator.

    Callbacks run synchronously on the calling thread while the calibrator is
    locked. Subclasses override the events they need.
    """

    def on_calibrate_start(
        self, calibrator: RobustNormMagnetometerCalibrator
    ) -> None:
        """Called once when a run starts."""

    def on_calibrate_end(self, calibrator: RobustNormMagnetometerCalibrator) -> None:
        """Called once when a run finishes with a result."""

    def on_calibrate_next_iteration(
        self,
        calibrator: RobustNormMagnetometerCalibrator,
        iteration: int,
    ) -> None:
        """Called after every completed consensus iteration."""

    def on_calibrate_progress_change(
        self,
        calibrator: RobustNormMagnetometerCalibrator,
        progress: float,
    ) -> None:
        """Called when progress advances by at least the progress delta."""
