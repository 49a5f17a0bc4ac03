################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Weighted Levenberg-Marquardt solver for small dense least-squares problems."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np
from numpy.typing import NDArray

from robust_magcal.calibrator.errors import NumericalFailure
from robust_magcal.config.calibration_params import LmParams


_LOG: logging.Logger = logging.getLogger(__name__)


# Units: unitless. Meaning: fallback diagonal damping for singular normal matrices
_LM_DAMPING: float = 1e-6

# Units: unitless. Meaning: relative floor on the normal matrix diagonal
_DIAG_FLOOR: float = 1e-12

# Units: unitless. Meaning: damping above which no descent step exists
_MAX_DAMPING: float = 1e16

# Units: unitless. Meaning: smallest damping kept after accepted steps
_MIN_DAMPING: float = 1e-15


# Maps a parameter vector to unweighted residuals (N,) and Jacobian (N, P)
ResidualFunction = Callable[
    [NDArray[np.float64]],
    tuple[NDArray[np.float64], NDArray[np.float64]],
]


@dataclass(frozen=True)
class LmResult:
    """Outcome of a Levenberg-Marquardt fit.

    Attributes:
        x: Estimated parameter vector
        information: Weighted normal matrix J^T W J at the solution
        chi_sq: Weighted sum of squared residuals at the solution
        iterations: Number of iterations performed
        converged: True if a convergence criterion was met
    """

    x: NDArray[np.float64]
    information: NDArray[np.float64]
    chi_sq: float
    iterations: int
    converged: bool


def _solve(H: NDArray[np.float64], b: NDArray[np.float64]) -> NDArray[np.float64]:
    rhs: NDArray[np.float64] = -b
    try:
        delta: NDArray[np.float64] = np.asarray(
            np.linalg.solve(H, rhs),
            dtype=np.float64,
        )
    except np.linalg.LinAlgError:
        dim: int = int(H.shape[0])
        H_damped: NDArray[np.float64] = H + np.eye(dim, dtype=np.float64) * _LM_DAMPING
        try:
            delta = np.asarray(
                np.linalg.solve(H_damped, rhs),
                dtype=np.float64,
            )
        except np.linalg.LinAlgError:
            delta = np.asarray(
                np.linalg.lstsq(H_damped, rhs, rcond=None)[0],
                dtype=np.float64,
            )
    return delta


def _evaluate(
    residual_fn: ResidualFunction,
    x: NDArray[np.float64],
    weights: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    residuals, jacobian = residual_fn(x)
    r: NDArray[np.float64] = np.asarray(residuals, dtype=np.float64)
    if r.shape != weights.shape:
        raise NumericalFailure("Residuals do not match sigma")
    J: NDArray[np.float64] = np.asarray(jacobian, dtype=np.float64)
    if J.shape != (weights.shape[0], x.shape[0]):
        raise NumericalFailure("Jacobian shape does not match the problem")
    r_w: NDArray[np.float64] = r * weights
    J_w: NDArray[np.float64] = J * weights[:, np.newaxis]
    if not np.all(np.isfinite(r_w)) or not np.all(np.isfinite(J_w)):
        raise NumericalFailure("Residuals or Jacobian are not finite")
    return r_w, J_w


def solve_weighted(
    residual_fn: ResidualFunction,
    x0: NDArray[np.float64],
    sigma: NDArray[np.float64],
    params: LmParams | None = None,
) -> LmResult:
    """Minimize sum((r_i / sigma_i)^2) starting from ``x0``.

    Uses Marquardt scaling, damping proportional to the normal matrix
    diagonal. Rejected steps increase the damping by ``damping_factor`` and
    accepted steps decrease it. A fit whose damping grows past any useful
    value is at a minimum to machine precision and counts as converged.

    Raises:
        NumericalFailure: If residuals become non-finite at the start point
            or the inputs have inconsistent shapes
    """
    lm: LmParams = params if params is not None else LmParams()

    x: NDArray[np.float64] = np.array(x0, dtype=np.float64)
    sigma_arr: NDArray[np.float64] = np.asarray(sigma, dtype=np.float64)
    if x.ndim != 1 or sigma_arr.ndim != 1:
        raise NumericalFailure("Parameters and sigma must be vectors")
    if np.any(sigma_arr <= 0.0) or not np.all(np.isfinite(sigma_arr)):
        raise NumericalFailure("sigma must be finite and positive")
    weights: NDArray[np.float64] = 1.0 / sigma_arr

    r_w, J_w = _evaluate(residual_fn, x, weights)

    cost: float = float(r_w @ r_w)
    H: NDArray[np.float64] = J_w.T @ J_w
    g: NDArray[np.float64] = J_w.T @ r_w
    mu: float = float(lm.initial_damping)

    converged: bool = False
    iterations: int = 0
    for iteration in range(int(lm.max_iters)):
        iterations = iteration + 1
        if cost == 0.0:
            converged = True
            break

        diag: NDArray[np.float64] = np.diag(H).copy()
        diag_floor: float = _DIAG_FLOOR * max(float(np.max(diag)), 1.0)
        diag = np.maximum(diag, diag_floor)
        delta: NDArray[np.float64] = _solve(H + mu * np.diag(diag), g)
        x_new: NDArray[np.float64] = x + delta

        cost_new: float = np.inf
        try:
            r_new, J_new = _evaluate(residual_fn, x_new, weights)
            cost_new = float(r_new @ r_new)
        except NumericalFailure:
            _LOG.debug("Rejected non-finite step at iteration %d", iteration)

        if cost_new < cost:
            decrease: float = (cost - cost_new) / cost
            step: float = float(np.linalg.norm(delta))
            scale: float = float(np.linalg.norm(x)) + lm.step_tol

            x = x_new
            r_w = r_new
            J_w = J_new
            cost = cost_new
            H = J_w.T @ J_w
            g = J_w.T @ r_w
            mu = max(mu / lm.damping_factor, _MIN_DAMPING)

            if decrease <= lm.cost_tol or step <= lm.step_tol * scale:
                converged = True
                break
        else:
            mu *= lm.damping_factor
            if mu > _MAX_DAMPING:
                converged = True
                break

    return LmResult(
        x=x,
        information=H,
        chi_sq=cost,
        iterations=iterations,
        converged=converged,
    )
