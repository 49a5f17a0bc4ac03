################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Structured configuration schema for robust magnetometer calibration."""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace
from typing import Any

from robust_magcal.robust.robust_method import RobustMethod


# Robust estimation method identifier
CONSENSUS_METHOD: str = "msac"
# Inlier threshold on the field norm residual in tesla
CONSENSUS_THRESHOLD_T: float = 1e-9
# Median residual below which LMedS-family methods stop early, in tesla
CONSENSUS_STOP_THRESHOLD_T: float = 1e-9
# Probability that at least one sampled subset is outlier free
CONSENSUS_CONFIDENCE: float = 0.99
# Maximum number of consensus iterations
CONSENSUS_MAX_ITERATIONS: int = 5000
# Fraction of expected iterations between progress notifications
CONSENSUS_PROGRESS_DELTA: float = 0.05
# Measurements per sampled subset (None means the minimum for the model)
CONSENSUS_PRELIMINARY_SUBSET_SIZE: int | None = None

# Refine the consensus model using all inliers
REFINEMENT_REFINE_RESULT: bool = True
# Keep the parameter covariance of the final estimate
REFINEMENT_KEEP_COVARIANCE: bool = True
# Standard deviation used for measurements without one, in tesla
REFINEMENT_NOISE_FLOOR_T: float = 1e-7

# Maximum Levenberg-Marquardt iterations per fit
SOLVER_MAX_ITERS: int = 100
# Relative cost decrease below which the fit is converged
SOLVER_COST_TOL: float = 1e-12
# Relative step norm below which the fit is converged
SOLVER_STEP_TOL: float = 1e-12
# Initial Levenberg-Marquardt damping, relative to the normal matrix diagonal
SOLVER_INITIAL_DAMPING: float = 1e-3
# Multiplicative damping update on rejected or accepted steps
SOLVER_DAMPING_FACTOR: float = 10.0

# Supported robust estimation methods
METHODS: tuple[str, ...] = tuple(method.value for method in RobustMethod)


class MagCalParamsError(ValueError):
    """Raised when calibration parameter validation fails."""


def _require_real(value: float, name: str) -> None:
    """Require a real number that is not a bool."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise MagCalParamsError(f"{name} must be a number")


def _require_positive(value: float, name: str) -> None:
    """Require a finite positive value."""
    _require_real(value, name)
    if not math.isfinite(value) or value <= 0.0:
        raise MagCalParamsError(f"{name} must be positive")


def _require_open_unit(value: float, name: str) -> None:
    """Require a value in the open interval (0, 1)."""
    _require_real(value, name)
    if not 0.0 < value < 1.0:
        raise MagCalParamsError(f"{name} must be in (0, 1)")


def _require_positive_int(value: int, name: str) -> None:
    """Require a positive integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise MagCalParamsError(f"{name} must be an int")
    if value <= 0:
        raise MagCalParamsError(f"{name} must be positive")


def _validate_optional_positive_int(value: int | None, name: str) -> None:
    """Validate an optional positive integer value."""
    if value is None:
        return
    _require_positive_int(value, name)


@dataclass(frozen=True)
class ConsensusParams:
    """Sample-consensus loop parameters."""

    # Robust estimation method identifier
    method: str = CONSENSUS_METHOD
    # Inlier threshold in tesla
    threshold_T: float = CONSENSUS_THRESHOLD_T
    # Early-stop median residual for LMedS-family methods in tesla
    stop_threshold_T: float = CONSENSUS_STOP_THRESHOLD_T
    # Target confidence in (0, 1]
    confidence: float = CONSENSUS_CONFIDENCE
    # Maximum number of iterations
    max_iterations: int = CONSENSUS_MAX_ITERATIONS
    # Progress notification granularity in (0, 1)
    progress_delta: float = CONSENSUS_PROGRESS_DELTA
    # Subset size, None for the model minimum
    preliminary_subset_size: int | None = CONSENSUS_PRELIMINARY_SUBSET_SIZE


@dataclass(frozen=True)
class RefinementParams:
    """Refinement stage parameters."""

    # Refine the consensus model using all inliers
    refine_result: bool = REFINEMENT_REFINE_RESULT
    # Keep the covariance of the estimated parameters
    keep_covariance: bool = REFINEMENT_KEEP_COVARIANCE
    # Fallback measurement standard deviation in tesla
    noise_floor_T: float = REFINEMENT_NOISE_FLOOR_T


@dataclass(frozen=True)
class LmParams:
    """Levenberg-Marquardt solver parameters."""

    # Maximum iterations per fit
    max_iters: int = SOLVER_MAX_ITERS
    # Relative cost tolerance
    cost_tol: float = SOLVER_COST_TOL
    # Relative step tolerance
    step_tol: float = SOLVER_STEP_TOL
    # Initial damping relative to the normal matrix diagonal
    initial_damping: float = SOLVER_INITIAL_DAMPING
    # Damping update factor
    damping_factor: float = SOLVER_DAMPING_FACTOR


@dataclass(frozen=True)
class MagCalParams:
    """Complete configuration tree for robust magnetometer calibration."""

    consensus: ConsensusParams
    refinement: RefinementParams
    solver: LmParams

    @classmethod
    def defaults(cls) -> MagCalParams:
        """Return the default parameter tree."""
        return cls(
            consensus=ConsensusParams(),
            refinement=RefinementParams(),
            solver=LmParams(),
        )

    def validate(self) -> None:
        """Validate parameter invariants and constraints."""
        if self.consensus.method not in METHODS:
            raise MagCalParamsError(
                f"consensus.method must be one of {', '.join(METHODS)}"
            )
        _require_positive(self.consensus.threshold_T, "consensus.threshold_T")
        _require_positive(
            self.consensus.stop_threshold_T, "consensus.stop_threshold_T"
        )
        _require_real(self.consensus.confidence, "consensus.confidence")
        if not 0.0 < self.consensus.confidence <= 1.0:
            raise MagCalParamsError("consensus.confidence must be in (0, 1]")
        _require_positive_int(
            self.consensus.max_iterations, "consensus.max_iterations"
        )
        _require_open_unit(self.consensus.progress_delta, "consensus.progress_delta")
        _validate_optional_positive_int(
            self.consensus.preliminary_subset_size,
            "consensus.preliminary_subset_size",
        )

        _require_positive(self.refinement.noise_floor_T, "refinement.noise_floor_T")

        _require_positive_int(self.solver.max_iters, "solver.max_iters")
        _require_positive(self.solver.cost_tol, "solver.cost_tol")
        _require_positive(self.solver.step_tol, "solver.step_tol")
        _require_positive(self.solver.initial_damping, "solver.initial_damping")
        _require_real(self.solver.damping_factor, "solver.damping_factor")
        if self.solver.damping_factor <= 1.0:
            raise MagCalParamsError("solver.damping_factor must exceed 1")

    def replace(self, **namespace_overrides: Any) -> MagCalParams:
        """Return a modified copy of the parameters."""
        return replace(self, **namespace_overrides)

    def as_nested_dict(self) -> dict[str, Any]:
        """Return a nested dict representation for debugging and persistence."""
        return {
            namespace.name: {
                item.name: getattr(getattr(self, namespace.name), item.name)
                for item in fields(getattr(self, namespace.name))
            }
            for namespace in fields(self)
        }


_NAMESPACES: dict[str, type] = {
    "consensus": ConsensusParams,
    "refinement": RefinementParams,
    "solver": LmParams,
}


def params_from_dict(data: dict[str, Any]) -> MagCalParams:
    """Build a parameter tree from a nested mapping, such as parsed YAML.

    Missing namespaces and keys fall back to defaults. Unknown keys are
    rejected so that typos do not silently fall back to defaults.
    """
    unknown: set[str] = set(data.keys()) - set(_NAMESPACES.keys())
    if unknown:
        raise MagCalParamsError(f"Unknown namespaces: {', '.join(sorted(unknown))}")

    namespaces: dict[str, Any] = {}
    for name, namespace_type in _NAMESPACES.items():
        values: Any = data.get(name) or {}
        if not isinstance(values, dict):
            raise MagCalParamsError(f"{name} must be a mapping")
        allowed: set[str] = {item.name for item in fields(namespace_type)}
        unknown_keys: set[str] = set(values.keys()) - allowed
        if unknown_keys:
            raise MagCalParamsError(
                f"Unknown keys in {name}: {', '.join(sorted(unknown_keys))}"
            )
        namespaces[name] = namespace_type(**values)

    params: MagCalParams = MagCalParams(**namespaces)
    params.validate()
    return params
