################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Weighted refit of the consensus model on its inliers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import replace
from typing import Sequence

from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibrator.errors import NumericalFailure
from robust_magcal.robust.preliminary import ModelSetup
from robust_magcal.solver.norm_fitter import NormFit


_LOG: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefinementOutcome:
    """Final model of a run.

    Attributes:
        fit: Refined fit, or the consensus fit without covariance
        refined: True if the refit succeeded
    """

    fit: NormFit
    refined: bool


def refine(
    setup: ModelSetup,
    measurements: Sequence[FluxMeasurement],
    inliers_data: InliersData,
    preliminary: NormFit,
    *,
    keep_covariance: bool,
) -> RefinementOutcome:
    """Refit the consensus model on its inliers with 1 / sigma^2 weights.

    Falls back to the consensus model, without covariance, when there are
    too few inliers or the refit fails.
    """
    fallback: RefinementOutcome = RefinementOutcome(
        fit=replace(preliminary, covariance=None),
        refined=False,
    )

    inliers: list[FluxMeasurement] = [
        measurements[int(i)] for i in inliers_data.inlier_indices()
    ]
    if len(inliers) < setup.minimum_measurements():
        _LOG.debug(
            "Skipping refinement with %d inliers, %d required",
            len(inliers),
            setup.minimum_measurements(),
        )
        return fallback

    try:
        fit: NormFit = setup.seeded_from(preliminary.params).fit(
            inliers,
            keep_covariance=keep_covariance,
        )
    except NumericalFailure as exc:
        _LOG.debug("Refinement failed, keeping consensus model: %s", exc)
        return fallback

    return RefinementOutcome(fit=fit, refined=True)
