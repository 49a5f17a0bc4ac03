################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for the consensus loop and the refinement stage."""

from __future__ import annotations

import dataclasses

import numpy as np
import pytest

from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.calibrator.errors import CalibrationError
from robust_magcal.calibrator.run_state import RunState
from robust_magcal.calibrator.run_state import RunStateMachine
from robust_magcal.config.calibration_params import ConsensusParams
from robust_magcal.config.calibration_params import LmParams
from robust_magcal.generators.measurement_generator import GeneratedMeasurements
from robust_magcal.generators.measurement_generator import generate_measurements
from robust_magcal.generators.measurement_generator import random_hard_iron
from robust_magcal.generators.measurement_generator import random_soft_iron
from robust_magcal.robust.consensus import ConsensusOutcome
from robust_magcal.robust.consensus import run_consensus
from robust_magcal.robust.preliminary import ModelSetup
from robust_magcal.robust.refinement import RefinementOutcome
from robust_magcal.robust.refinement import refine
from robust_magcal.robust.robust_method import RobustMethod


NORM_T: float = 5e-5


def _scenario(
    seed: int,
) -> tuple[ModelSetup, GeneratedMeasurements, CalibrationParameters]:
    rng: np.random.Generator = np.random.default_rng(seed)
    truth: CalibrationParameters = CalibrationParameters(
        hard_iron_T=random_hard_iron(rng, 1e-5),
        mm=random_soft_iron(rng, 0.05, common_axis=True),
    )
    data: GeneratedMeasurements = generate_measurements(
        truth,
        NORM_T,
        50,
        rng,
        outlier_fraction=0.04,
        outlier_std_T=1e-5,
    )
    setup: ModelSetup = ModelSetup(
        ground_truth_norm_T=NORM_T,
        initial=CalibrationParameters(
            hard_iron_T=truth.hard_iron_T, mm=np.zeros((3, 3), dtype=np.float64)
        ),
        hard_iron_known=True,
        common_axis_used=True,
        noise_floor_T=1e-7,
        solver=LmParams(),
    )
    return setup, data, truth


def _started() -> RunStateMachine:
    state: RunStateMachine = RunStateMachine()
    state.transition(RunState.SAMPLING)
    return state


@pytest.mark.parametrize(
    "method",
    [RobustMethod.RANSAC, RobustMethod.MSAC, RobustMethod.LMEDS],
)
def test_consensus_separates_outliers(method: RobustMethod) -> None:
    """The best candidate classifies exactly the clean measurements as inliers."""
    setup, data, truth = _scenario(30)
    iterations: list[int] = []
    outcome: ConsensusOutcome = run_consensus(
        setup,
        data.measurements,
        method,
        ConsensusParams(method=method.value),
        _started(),
        np.random.default_rng(31),
        on_iteration=iterations.append,
    )
    np.testing.assert_array_equal(outcome.inliers_data.inliers, ~data.outliers)
    np.testing.assert_allclose(outcome.fit.params.mm, truth.mm, atol=1e-9)
    assert outcome.iterations == len(iterations)
    assert iterations == list(range(1, outcome.iterations + 1))


def test_progressive_consensus_uses_scores() -> None:
    """PROSAC draws from the scores and finds the clean model."""
    setup, data, truth = _scenario(32)
    scores: np.ndarray = np.where(data.outliers, 0.0, 1.0)
    outcome: ConsensusOutcome = run_consensus(
        setup,
        data.measurements,
        RobustMethod.PROSAC,
        ConsensusParams(method="prosac"),
        _started(),
        np.random.default_rng(33),
        quality_scores=scores,
    )
    np.testing.assert_allclose(outcome.fit.params.mm, truth.mm, atol=1e-9)
    assert outcome.inliers_data.num_inliers == int(np.count_nonzero(~data.outliers))


def test_progressive_consensus_requires_scores() -> None:
    """PROSAC-family methods cannot run without scores."""
    setup, data, _ = _scenario(34)
    with pytest.raises(CalibrationError):
        run_consensus(
            setup,
            data.measurements,
            RobustMethod.PROMEDS,
            ConsensusParams(method="promeds"),
            _started(),
            np.random.default_rng(35),
        )


def test_progress_notifications_are_spaced() -> None:
    """Progress is reported in increasing steps of at least the delta."""
    setup, data, _ = _scenario(36)
    progress: list[float] = []
    run_consensus(
        setup,
        data.measurements,
        RobustMethod.MSAC,
        ConsensusParams(confidence=1.0, max_iterations=40, progress_delta=0.1),
        _started(),
        np.random.default_rng(37),
        on_progress=progress.append,
    )
    assert progress
    assert all(0.0 < value <= 1.0 for value in progress)
    steps: list[float] = [b - a for a, b in zip(progress, progress[1:])]
    assert all(step >= 0.1 - 1e-12 for step in steps)


def test_all_subsets_failing_raises() -> None:
    """A run where every fit fails reports CalibrationError."""
    setup, data, _ = _scenario(38)
    singular: ModelSetup = setup.seeded_from(
        CalibrationParameters(hard_iron_T=np.zeros(3), mm=-np.eye(3))
    )
    with pytest.raises(CalibrationError):
        run_consensus(
            singular,
            data.measurements,
            RobustMethod.MSAC,
            ConsensusParams(max_iterations=5),
            _started(),
            np.random.default_rng(39),
        )


def test_no_inliers_raises() -> None:
    """A run whose best model explains no measurement reports CalibrationError."""
    setup, _, truth = _scenario(40)
    noisy: GeneratedMeasurements = generate_measurements(
        truth, NORM_T, 40, np.random.default_rng(41), noise_std_T=1e-6
    )
    with pytest.raises(CalibrationError):
        run_consensus(
            setup,
            noisy.measurements,
            RobustMethod.MSAC,
            ConsensusParams(
                threshold_T=1e-30, max_iterations=50, preliminary_subset_size=12
            ),
            _started(),
            np.random.default_rng(42),
        )


def test_refinement_uses_inliers_and_keeps_covariance() -> None:
    """Refinement refits the inliers and attaches the covariance."""
    setup, data, truth = _scenario(40)
    outcome: ConsensusOutcome = run_consensus(
        setup,
        data.measurements,
        RobustMethod.MSAC,
        ConsensusParams(),
        _started(),
        np.random.default_rng(41),
    )
    refined: RefinementOutcome = refine(
        setup,
        data.measurements,
        outcome.inliers_data,
        outcome.fit,
        keep_covariance=True,
    )
    assert refined.refined
    assert refined.fit.covariance is not None
    np.testing.assert_allclose(refined.fit.params.mm, truth.mm, atol=1e-9)


def test_refinement_falls_back_with_few_inliers() -> None:
    """Too few inliers keep the consensus model without covariance."""
    setup, data, _ = _scenario(42)
    outcome: ConsensusOutcome = run_consensus(
        setup,
        data.measurements,
        RobustMethod.MSAC,
        ConsensusParams(),
        _started(),
        np.random.default_rng(43),
    )
    mask: np.ndarray = np.zeros(len(data.measurements), dtype=bool)
    mask[:3] = True
    sparse: InliersData = dataclasses.replace(outcome.inliers_data, inliers=mask)

    fallback: RefinementOutcome = refine(
        setup,
        data.measurements,
        sparse,
        outcome.fit,
        keep_covariance=True,
    )
    assert not fallback.refined
    assert fallback.fit.covariance is None
    assert fallback.fit.params is outcome.fit.params
