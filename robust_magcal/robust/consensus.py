################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Sample-consensus loop shared by the robust calibration methods.

Each iteration samples a subset, fits a candidate to it and scores the
candidate on every measurement:

- RANSAC keeps the candidate with the most inliers, ties broken by the
  MSAC score
- MSAC keeps the candidate with the lowest truncated squared loss
- LMedS keeps the candidate with the lowest median squared residual and
  stops early once that median drops below the stop threshold
- PROSAC and PROMedS score like MSAC and LMedS but draw subsets from a
  pool of top-quality measurements that grows over the run

The iteration budget shrinks as better candidates raise the inlier ratio.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibrator.errors import CalibrationError
from robust_magcal.calibrator.errors import NumericalFailure
from robust_magcal.calibrator.run_state import RunState
from robust_magcal.calibrator.run_state import RunStateMachine
from robust_magcal.config.calibration_params import ConsensusParams
from robust_magcal.robust.iteration_bound import required_iterations
from robust_magcal.robust.preliminary import ModelSetup
from robust_magcal.robust.preliminary import fit_subset
from robust_magcal.robust.residual_scorer import inlier_mask
from robust_magcal.robust.residual_scorer import lmeds_inlier_threshold
from robust_magcal.robust.residual_scorer import median_sq_residual
from robust_magcal.robust.residual_scorer import msac_score
from robust_magcal.robust.residual_scorer import norm_residuals_T
from robust_magcal.robust.robust_method import RobustMethod
from robust_magcal.robust.subset_sampler import ProgressiveSampler
from robust_magcal.robust.subset_sampler import UniformSampler
from robust_magcal.solver.norm_fitter import NormFit
from robust_magcal.solver.norm_fitter import stack_measurements


_LOG: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsensusOutcome:
    """Best candidate of a consensus run.

    Attributes:
        fit: Subset fit of the best candidate
        inliers_data: Inlier classification of the best candidate
        iterations: Number of iterations performed
    """

    fit: NormFit
    inliers_data: InliersData
    iterations: int


@dataclass(frozen=True)
class _Candidate:
    fit: NormFit
    rank: tuple[float, ...]
    inliers_data: InliersData
    median_residual_T: float


def _score_candidate(
    method: RobustMethod,
    fit: NormFit,
    residuals_T: NDArray[np.float64],
    consensus: ConsensusParams,
    subset_size: int,
) -> _Candidate:
    threshold_T: float = float(consensus.threshold_T)
    median_sq: float = median_sq_residual(residuals_T)

    if method.uses_median:
        threshold_T = lmeds_inlier_threshold(
            median_sq,
            int(residuals_T.shape[0]),
            subset_size,
            floor_T=float(consensus.stop_threshold_T),
        )
        rank: tuple[float, ...] = (median_sq,)
    elif method is RobustMethod.RANSAC:
        count: int = int(np.count_nonzero(inlier_mask(residuals_T, threshold_T)))
        rank = (-float(count), msac_score(residuals_T, threshold_T))
    else:
        rank = (msac_score(residuals_T, threshold_T),)

    return _Candidate(
        fit=fit,
        rank=rank,
        inliers_data=InliersData(
            inliers=inlier_mask(residuals_T, threshold_T),
            residuals_T=residuals_T,
            threshold_T=threshold_T,
        ),
        median_residual_T=math.sqrt(median_sq),
    )


def run_consensus(
    setup: ModelSetup,
    measurements: Sequence[FluxMeasurement],
    method: RobustMethod,
    consensus: ConsensusParams,
    state: RunStateMachine,
    rng: np.random.Generator,
    *,
    quality_scores: NDArray[np.float64] | None = None,
    on_iteration: Callable[[int], None] | None = None,
    on_progress: Callable[[float], None] | None = None,
) -> ConsensusOutcome:
    """Run the consensus loop and return the best candidate.

    The state machine must be in SAMPLING when called and is left in
    FITTING or SCORING after the last iteration.

    Raises:
        CalibrationError: If no subset produced a valid model
    """
    num_measurements: int = len(measurements)
    subset_size: int = (
        consensus.preliminary_subset_size
        if consensus.preliminary_subset_size is not None
        else setup.minimum_measurements()
    )
    b_meas_T: NDArray[np.float64] = stack_measurements(measurements)

    sampler: UniformSampler | ProgressiveSampler
    if method.uses_quality_scores:
        if quality_scores is None:
            raise CalibrationError(f"{method.value} requires quality scores")
        sampler = ProgressiveSampler(quality_scores, subset_size, rng)
    else:
        sampler = UniformSampler(num_measurements, subset_size, rng)

    max_iterations: int = int(consensus.max_iterations)
    budget: int = max_iterations
    best: _Candidate | None = None
    last_progress: float = 0.0
    iteration: int = 0

    while iteration < budget:
        if iteration > 0:
            state.transition(RunState.SAMPLING)
        indices: NDArray[np.int64] = sampler.sample()

        state.transition(RunState.FITTING)
        candidate: _Candidate | None = None
        try:
            fit: NormFit = fit_subset(setup, measurements, indices)
            state.transition(RunState.SCORING)
            residuals_T: NDArray[np.float64] = norm_residuals_T(
                fit.params, b_meas_T, setup.ground_truth_norm_T
            )
            candidate = _score_candidate(
                method, fit, residuals_T, consensus, subset_size
            )
        except NumericalFailure as exc:
            _LOG.debug("Discarded subset at iteration %d: %s", iteration, exc)

        iteration += 1

        if candidate is not None and (best is None or candidate.rank < best.rank):
            best = candidate
            budget = required_iterations(
                best.inliers_data.inlier_ratio(),
                subset_size,
                float(consensus.confidence),
                max_iterations,
            )

        if on_iteration is not None:
            on_iteration(iteration)

        progress: float = min(float(iteration) / float(budget), 1.0)
        if on_progress is not None and progress - last_progress >= float(
            consensus.progress_delta
        ):
            last_progress = progress
            on_progress(progress)

        if (
            method.uses_median
            and best is not None
            and best.median_residual_T < float(consensus.stop_threshold_T)
        ):
            break

    if best is None:
        raise CalibrationError(
            f"No valid model found in {iteration} iterations"
        )
    if best.inliers_data.num_inliers == 0:
        raise CalibrationError(f"No inliers found in {iteration} iterations")

    _LOG.debug(
        "Consensus finished after %d iterations with %d inliers",
        iteration,
        best.inliers_data.num_inliers,
    )
    return ConsensusOutcome(
        fit=best.fit,
        inliers_data=best.inliers_data,
        iterations=iteration,
    )
