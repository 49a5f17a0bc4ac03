################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Robust magnetometer calibrator for a field of known norm.

The calibrator estimates the soft-iron matrix ``Mm``, and optionally the
hard-iron bias, from magnetic flux density measurements taken in a field
whose norm is known, such as the Earth's field at a surveyed location.
Outliers are rejected with a sample-consensus method before an optional
weighted refit on the inliers.

Configuration is locked while :meth:`calibrate` runs: every mutator, and a
reentrant call to :meth:`calibrate`, raises :class:`LockedError`.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibration_types.calibration_result import CalibrationResult
from robust_magcal.calibration_types.flux_measurement import FluxMeasurement
from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.calibrator.errors import CalibrationError
from robust_magcal.calibrator.errors import LockedError
from robust_magcal.calibrator.errors import NotReadyError
from robust_magcal.calibrator.listener import CalibratorListener
from robust_magcal.calibrator.run_state import RunState
from robust_magcal.calibrator.run_state import RunStateMachine
from robust_magcal.config.calibration_params import ConsensusParams
from robust_magcal.config.calibration_params import MagCalParams
from robust_magcal.config.calibration_params import MagCalParamsError
from robust_magcal.config.calibration_params import RefinementParams
from robust_magcal.math_utils.validation import AXES
from robust_magcal.math_utils.validation import as_matrix3
from robust_magcal.math_utils.validation import as_vector3
from robust_magcal.robust.consensus import ConsensusOutcome
from robust_magcal.robust.consensus import run_consensus
from robust_magcal.robust.preliminary import ModelSetup
from robust_magcal.robust.refinement import RefinementOutcome
from robust_magcal.robust.refinement import refine
from robust_magcal.robust.robust_method import RobustMethod
from robust_magcal.solver.norm_fitter import NormFit
from robust_magcal.solver.norm_problem import minimum_measurements


_LOG: logging.Logger = logging.getLogger(__name__)


class RobustNormMagnetometerCalibrator:
    """Sample-consensus calibrator for hard and soft iron."""

    def __init__(
        self,
        measurements: Sequence[FluxMeasurement] | None = None,
        ground_truth_norm_T: float | None = None,
        hard_iron_T: Any = None,
        initial_mm: Any = None,
        common_axis_used: bool = False,
        listener: CalibratorListener | None = None,
        params: MagCalParams | None = None,
        *,
        estimate_hard_iron: bool = False,
        quality_scores: Any = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        """Create a calibrator.

        Args:
            measurements: Measurements kept by reference, or None
            ground_truth_norm_T: Known field norm in tesla, or None
            hard_iron_T: Hard-iron bias in tesla as a 3-vector or 3x1 matrix,
                zeros when omitted. Fixed unless ``estimate_hard_iron`` is set,
                in which case it seeds the fit
            initial_mm: Initial soft-iron guess, zeros when omitted
            common_axis_used: Constrain ``Mm`` to be upper triangular
            listener: Receiver of run notifications
            params: Parameter tree, defaults when omitted
            estimate_hard_iron: Estimate the hard iron with the matrix
            quality_scores: One score per measurement for PROSAC-family methods
            rng: Random generator used for subset sampling
        """
        self._state: RunStateMachine = RunStateMachine()

        self._params: MagCalParams = MagCalParams.defaults()
        if params is not None:
            params.validate()
            self._params = params

        self._measurements: Sequence[FluxMeasurement] | None = measurements
        self._ground_truth_norm_T: float | None = None
        if ground_truth_norm_T is not None:
            self._ground_truth_norm_T = _positive_norm(ground_truth_norm_T)

        self._hard_iron_T: NDArray[np.float64] = np.zeros(AXES, dtype=np.float64)
        if hard_iron_T is not None:
            self._hard_iron_T = as_vector3(hard_iron_T, "hard_iron_T")

        self._initial_mm: NDArray[np.float64] = np.zeros((AXES, AXES), dtype=np.float64)
        if initial_mm is not None:
            self._initial_mm = as_matrix3(initial_mm, "initial_mm")

        self._common_axis_used: bool = bool(common_axis_used)
        self._estimate_hard_iron: bool = bool(estimate_hard_iron)
        self._listener: CalibratorListener | None = listener
        self._quality_scores: NDArray[np.float64] | None = None
        if quality_scores is not None:
            self._quality_scores = _as_scores(quality_scores)
        self._rng: np.random.Generator = (
            rng if rng is not None else np.random.default_rng()
        )

        self._result: CalibrationResult | None = None

    @classmethod
    def create(
        cls,
        method: RobustMethod | str = RobustMethod.MSAC,
        **kwargs: Any,
    ) -> RobustNormMagnetometerCalibrator:
        """Return a calibrator configured for a robust method."""
        robust_method: RobustMethod = RobustMethod(method)
        params: MagCalParams = kwargs.pop("params", None) or MagCalParams.defaults()
        params = params.replace(
            consensus=replace(params.consensus, method=robust_method.value)
        )
        return cls(params=params, **kwargs)

    # Run state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def run_state(self) -> RunState:
        return self._state.state

    def _check_unlocked(self) -> None:
        if self._state.is_running:
            raise LockedError("Calibrator is running")

    # Inputs

    @property
    def measurements(self) -> Sequence[FluxMeasurement] | None:
        return self._measurements

    @measurements.setter
    def measurements(self, value: Sequence[FluxMeasurement] | None) -> None:
        self._check_unlocked()
        self._measurements = value

    @property
    def ground_truth_norm_T(self) -> float | None:
        return self._ground_truth_norm_T

    @ground_truth_norm_T.setter
    def ground_truth_norm_T(self, value: float | None) -> None:
        self._check_unlocked()
        self._ground_truth_norm_T = None if value is None else _positive_norm(value)

    @property
    def hard_iron_T(self) -> NDArray[np.float64]:
        return self._hard_iron_T.copy()

    @hard_iron_T.setter
    def hard_iron_T(self, value: Any) -> None:
        self._check_unlocked()
        self._hard_iron_T = as_vector3(value, "hard_iron_T")

    @property
    def hard_iron_x_T(self) -> float:
        return float(self._hard_iron_T[0])

    @hard_iron_x_T.setter
    def hard_iron_x_T(self, value: float) -> None:
        self._set_hard_iron_axis(0, value)

    @property
    def hard_iron_y_T(self) -> float:
        return float(self._hard_iron_T[1])

    @hard_iron_y_T.setter
    def hard_iron_y_T(self, value: float) -> None:
        self._set_hard_iron_axis(1, value)

    @property
    def hard_iron_z_T(self) -> float:
        return float(self._hard_iron_T[2])

    @hard_iron_z_T.setter
    def hard_iron_z_T(self, value: float) -> None:
        self._set_hard_iron_axis(2, value)

    def _set_hard_iron_axis(self, axis: int, value: float) -> None:
        self._check_unlocked()
        hard_iron_T: NDArray[np.float64] = self._hard_iron_T.copy()
        hard_iron_T[axis] = value
        self._hard_iron_T = as_vector3(hard_iron_T, "hard_iron_T")

    def set_hard_iron_components(self, x_T: float, y_T: float, z_T: float) -> None:
        """Set the hard-iron bias from per-axis values in tesla."""
        self._check_unlocked()
        self._hard_iron_T = as_vector3([x_T, y_T, z_T], "hard_iron_T")

    @property
    def initial_mm(self) -> NDArray[np.float64]:
        return self._initial_mm.copy()

    @initial_mm.setter
    def initial_mm(self, value: Any) -> None:
        self._check_unlocked()
        self._initial_mm = as_matrix3(value, "initial_mm")

    def set_initial_scaling_factors(self, sx: float, sy: float, sz: float) -> None:
        """Set the diagonal of the initial soft-iron guess."""
        self._check_unlocked()
        mm: NDArray[np.float64] = self._initial_mm.copy()
        mm[0, 0] = sx
        mm[1, 1] = sy
        mm[2, 2] = sz
        self._initial_mm = as_matrix3(mm, "initial_mm")

    def set_initial_cross_coupling_errors(
        self,
        mxy: float,
        mxz: float,
        myx: float,
        myz: float,
        mzx: float,
        mzy: float,
    ) -> None:
        """Set the off-diagonal entries of the initial soft-iron guess."""
        self._check_unlocked()
        mm: NDArray[np.float64] = self._initial_mm.copy()
        mm[0, 1] = mxy
        mm[0, 2] = mxz
        mm[1, 0] = myx
        mm[1, 2] = myz
        mm[2, 0] = mzx
        mm[2, 1] = mzy
        self._initial_mm = as_matrix3(mm, "initial_mm")

    @property
    def common_axis_used(self) -> bool:
        return self._common_axis_used

    @common_axis_used.setter
    def common_axis_used(self, value: bool) -> None:
        self._check_unlocked()
        self._common_axis_used = bool(value)

    @property
    def estimate_hard_iron(self) -> bool:
        return self._estimate_hard_iron

    @estimate_hard_iron.setter
    def estimate_hard_iron(self, value: bool) -> None:
        self._check_unlocked()
        self._estimate_hard_iron = bool(value)

    @property
    def listener(self) -> CalibratorListener | None:
        return self._listener

    @listener.setter
    def listener(self, value: CalibratorListener | None) -> None:
        self._check_unlocked()
        self._listener = value

    @property
    def quality_scores(self) -> NDArray[np.float64] | None:
        if self._quality_scores is None:
            return None
        return self._quality_scores.copy()

    @quality_scores.setter
    def quality_scores(self, value: Any) -> None:
        self._check_unlocked()
        if value is None:
            self._quality_scores = None
            return
        scores: NDArray[np.float64] = _as_scores(value)
        if scores.shape[0] < self.minimum_required_measurements:
            raise MagCalParamsError(
                f"quality_scores needs at least "
                f"{self.minimum_required_measurements} entries"
            )
        self._quality_scores = scores

    # Parameters

    @property
    def params(self) -> MagCalParams:
        return self._params

    @params.setter
    def params(self, value: MagCalParams) -> None:
        self._check_unlocked()
        value.validate()
        self._params = value

    def _set_consensus(self, **changes: Any) -> None:
        self._check_unlocked()
        consensus: ConsensusParams = replace(self._params.consensus, **changes)
        params: MagCalParams = self._params.replace(consensus=consensus)
        params.validate()
        self._params = params

    def _set_refinement(self, **changes: Any) -> None:
        self._check_unlocked()
        refinement: RefinementParams = replace(self._params.refinement, **changes)
        params: MagCalParams = self._params.replace(refinement=refinement)
        params.validate()
        self._params = params

    @property
    def method(self) -> RobustMethod:
        return RobustMethod(self._params.consensus.method)

    @property
    def threshold_T(self) -> float:
        return float(self._params.consensus.threshold_T)

    @threshold_T.setter
    def threshold_T(self, value: float) -> None:
        self._set_consensus(threshold_T=value)

    @property
    def stop_threshold_T(self) -> float:
        return float(self._params.consensus.stop_threshold_T)

    @stop_threshold_T.setter
    def stop_threshold_T(self, value: float) -> None:
        self._set_consensus(stop_threshold_T=value)

    @property
    def confidence(self) -> float:
        return float(self._params.consensus.confidence)

    @confidence.setter
    def confidence(self, value: float) -> None:
        self._set_consensus(confidence=value)

    @property
    def max_iterations(self) -> int:
        return int(self._params.consensus.max_iterations)

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._set_consensus(max_iterations=value)

    @property
    def progress_delta(self) -> float:
        return float(self._params.consensus.progress_delta)

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._set_consensus(progress_delta=value)

    @property
    def preliminary_subset_size(self) -> int:
        """Measurements per sampled subset, the model minimum by default."""
        size: int | None = self._params.consensus.preliminary_subset_size
        return self.minimum_required_measurements if size is None else size

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, value: int) -> None:
        self._check_unlocked()
        if value < self.minimum_required_measurements:
            raise MagCalParamsError(
                f"preliminary_subset_size must be at least "
                f"{self.minimum_required_measurements}"
            )
        self._set_consensus(preliminary_subset_size=value)

    @property
    def refine_result(self) -> bool:
        return bool(self._params.refinement.refine_result)

    @refine_result.setter
    def refine_result(self, value: bool) -> None:
        self._set_refinement(refine_result=bool(value))

    @property
    def keep_covariance(self) -> bool:
        return bool(self._params.refinement.keep_covariance)

    @keep_covariance.setter
    def keep_covariance(self, value: bool) -> None:
        self._set_refinement(keep_covariance=bool(value))

    # Readiness

    @property
    def minimum_required_measurements(self) -> int:
        return minimum_measurements(
            hard_iron_known=not self._estimate_hard_iron,
            common_axis_used=self._common_axis_used,
        )

    @property
    def is_ready(self) -> bool:
        """True if a run has enough measurements and a field norm."""
        if self._measurements is None or self._ground_truth_norm_T is None:
            return False
        count: int = len(self._measurements)
        required: int = max(
            self.minimum_required_measurements, self.preliminary_subset_size
        )
        if count < required:
            return False
        if self.method.uses_quality_scores:
            return (
                self._quality_scores is not None
                and self._quality_scores.shape[0] == count
            )
        return True

    # Run

    def calibrate(self) -> CalibrationResult:
        """Estimate the calibration and return a snapshot of the result.

        Raises:
            LockedError: If a run is already in progress
            NotReadyError: If measurements or the field norm are missing
            CalibrationError: If no valid model could be found
        """
        self._check_unlocked()
        measurements: Sequence[FluxMeasurement] | None = self._measurements
        ground_truth_norm_T: float | None = self._ground_truth_norm_T
        if measurements is None or ground_truth_norm_T is None or not self.is_ready:
            raise NotReadyError(
                "Calibration needs a field norm and at least "
                f"{self.minimum_required_measurements} measurements"
            )

        method: RobustMethod = self.method

        self._state.transition(RunState.SAMPLING)
        self._result = None
        try:
            _LOG.info(
                "Starting %s calibration with %d measurements",
                method.value,
                len(measurements),
            )
            if self._listener is not None:
                self._listener.on_calibrate_start(self)

            setup: ModelSetup = ModelSetup(
                ground_truth_norm_T=ground_truth_norm_T,
                initial=CalibrationParameters(
                    hard_iron_T=self._hard_iron_T,
                    mm=self._initial_mm,
                ),
                hard_iron_known=not self._estimate_hard_iron,
                common_axis_used=self._common_axis_used,
                noise_floor_T=float(self._params.refinement.noise_floor_T),
                solver=self._params.solver,
            )
            outcome: ConsensusOutcome = run_consensus(
                setup,
                measurements,
                method,
                self._params.consensus,
                self._state,
                self._rng,
                quality_scores=self._quality_scores,
                on_iteration=self._notify_iteration,
                on_progress=self._notify_progress,
            )

            self._state.transition(RunState.FITTING)
            final: RefinementOutcome = self._refine(setup, measurements, outcome)
            fit: NormFit = final.fit
            self._result = CalibrationResult(
                params=fit.params,
                covariance=fit.covariance,
                mse_T2=fit.mse_T2,
                chi_sq=fit.chi_sq,
                inliers_data=outcome.inliers_data,
                method=method.value,
                ground_truth_norm_T=ground_truth_norm_T,
                hard_iron_known=not self._estimate_hard_iron,
                common_axis_used=self._common_axis_used,
                iterations=outcome.iterations,
                refined=final.refined,
            )

            if self._listener is not None:
                self._listener.on_calibrate_end(self)
            self._state.transition(RunState.CONVERGED)
        except CalibrationError:
            self._state.fail()
            _LOG.warning("%s calibration failed", method.value)
            raise
        except Exception:
            self._state.fail()
            raise

        _LOG.info(
            "Finished %s calibration: %d inliers, %d iterations, refined=%s",
            method.value,
            outcome.inliers_data.num_inliers,
            outcome.iterations,
            final.refined,
        )
        return self._result

    def _refine(
        self,
        setup: ModelSetup,
        measurements: Sequence[FluxMeasurement],
        outcome: ConsensusOutcome,
    ) -> RefinementOutcome:
        if not self._params.refinement.refine_result:
            return RefinementOutcome(
                fit=replace(outcome.fit, covariance=None),
                refined=False,
            )
        return refine(
            setup,
            measurements,
            outcome.inliers_data,
            outcome.fit,
            keep_covariance=self._params.refinement.keep_covariance,
        )

    def _notify_iteration(self, iteration: int) -> None:
        if self._listener is not None:
            self._listener.on_calibrate_next_iteration(self, iteration)

    def _notify_progress(self, progress: float) -> None:
        if self._listener is not None:
            self._listener.on_calibrate_progress_change(self, progress)

    # Results

    def result(self) -> CalibrationResult | None:
        """Return the snapshot of the last successful run."""
        return self._result

    @property
    def estimated_mm(self) -> NDArray[np.float64] | None:
        if self._result is None:
            return None
        return self._result.params.mm.copy()

    @property
    def estimated_hard_iron_T(self) -> NDArray[np.float64] | None:
        if self._result is None:
            return None
        return self._result.params.hard_iron_T.copy()

    @property
    def estimated_sx(self) -> float | None:
        return None if self._result is None else self._result.params.sx

    @property
    def estimated_sy(self) -> float | None:
        return None if self._result is None else self._result.params.sy

    @property
    def estimated_sz(self) -> float | None:
        return None if self._result is None else self._result.params.sz

    @property
    def estimated_mxy(self) -> float | None:
        return None if self._result is None else self._result.params.mxy

    @property
    def estimated_mxz(self) -> float | None:
        return None if self._result is None else self._result.params.mxz

    @property
    def estimated_myx(self) -> float | None:
        return None if self._result is None else self._result.params.myx

    @property
    def estimated_myz(self) -> float | None:
        return None if self._result is None else self._result.params.myz

    @property
    def estimated_mzx(self) -> float | None:
        return None if self._result is None else self._result.params.mzx

    @property
    def estimated_mzy(self) -> float | None:
        return None if self._result is None else self._result.params.mzy

    @property
    def estimated_covariance(self) -> NDArray[np.float64] | None:
        if self._result is None or self._result.covariance is None:
            return None
        return self._result.covariance.as_array()

    @property
    def estimated_mse_T2(self) -> float | None:
        return None if self._result is None else self._result.mse_T2

    @property
    def estimated_chi_sq(self) -> float | None:
        return None if self._result is None else self._result.chi_sq

    @property
    def inliers_data(self) -> InliersData | None:
        return None if self._result is None else self._result.inliers_data


def _positive_norm(value: float) -> float:
    if isinstance(value, bool):
        raise MagCalParamsError("ground_truth_norm_T must be a float")
    norm: float = float(value)
    if not np.isfinite(norm) or norm <= 0.0:
        raise MagCalParamsError("ground_truth_norm_T must be positive")
    return norm


def _as_scores(value: Any) -> NDArray[np.float64]:
    scores: NDArray[np.float64] = np.array(value, dtype=np.float64)
    if scores.ndim != 1:
        raise MagCalParamsError("quality_scores must be one-dimensional")
    if not np.all(np.isfinite(scores)):
        raise MagCalParamsError("quality_scores must be finite")
    return scores
