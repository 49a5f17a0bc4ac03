################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""YAML schema for calibration result snapshots.

Layout::

    format_version: 1
    model:
      method: msac
      ground_truth_norm_T: 4.8e-05
      hard_iron_known: true
      common_axis_used: false
    calibration:
      hard_iron_T: [bx, by, bz]
      mm_row_major_3x3: [sx, mxy, mxz, myx, sy, myz, mzx, mzy, sz]
      covariance_row_major: null or N*N floats in canonical parameter order
    statistics:
      mse_T2: 0.0
      chi_sq: 0.0
      iterations: 12
      refined: true
    inliers:
      threshold_T: 1.0e-09
      mask: [true, ...]
      residuals_T: [0.0, ...]
"""

from __future__ import annotations

import numbers
from typing import Any

import numpy as np
import yaml

from robust_magcal.calibration_types.calibration_result import CalibrationResult
from robust_magcal.calibration_types.inliers_data import InliersData
from robust_magcal.calibration_types.soft_iron import HARD_IRON_PARAM_NAMES
from robust_magcal.calibration_types.soft_iron import MM_PARAM_NAMES
from robust_magcal.calibration_types.soft_iron import CalibrationParameters
from robust_magcal.robust.robust_method import RobustMethod
from robust_magcal.state.covariance import Covariance
from robust_magcal.state.covariance import CovarianceError


# Supported snapshot format version
FORMAT_VERSION: int = 1


class MagCalYamlError(Exception):
    """Raised when the calibration YAML schema is invalid."""


def result_to_dict(result: CalibrationResult) -> dict[str, object]:
    """Convert a calibration result to a YAML-safe dictionary."""
    covariance: list[float] | None = None
    if result.covariance is not None:
        covariance = result.covariance.P.reshape(-1).tolist()

    return {
        "format_version": FORMAT_VERSION,
        "model": {
            "method": result.method,
            "ground_truth_norm_T": result.ground_truth_norm_T,
            "hard_iron_known": result.hard_iron_known,
            "common_axis_used": result.common_axis_used,
        },
        "calibration": {
            "hard_iron_T": result.params.hard_iron_T.tolist(),
            "mm_row_major_3x3": result.params.mm.reshape(-1).tolist(),
            "covariance_row_major": covariance,
        },
        "statistics": {
            "mse_T2": result.mse_T2,
            "chi_sq": result.chi_sq,
            "iterations": result.iterations,
            "refined": result.refined,
        },
        "inliers": {
            "threshold_T": result.inliers_data.threshold_T,
            "mask": [bool(flag) for flag in result.inliers_data.inliers],
            "residuals_T": result.inliers_data.residuals_T.tolist(),
        },
    }


def result_from_dict(data: dict[str, object]) -> CalibrationResult:
    """Parse a YAML dictionary into a calibration result."""
    if not isinstance(data, dict):
        raise MagCalYamlError("YAML root must be a mapping")
    _require_keys(
        "root",
        data,
        {"format_version", "model", "calibration", "statistics", "inliers"},
    )
    if _require_int(data["format_version"], "format_version") != FORMAT_VERSION:
        raise MagCalYamlError(f"format_version must be {FORMAT_VERSION}")

    model: dict[str, object] = _require_mapping(data["model"], "model")
    _require_keys(
        "model",
        model,
        {"method", "ground_truth_norm_T", "hard_iron_known", "common_axis_used"},
    )
    method: str = _require_str(model["method"], "model.method")
    if method not in {item.value for item in RobustMethod}:
        raise MagCalYamlError(f"model.method {method} is not supported")
    hard_iron_known: bool = _require_bool(
        model["hard_iron_known"], "model.hard_iron_known"
    )

    calibration: dict[str, object] = _require_mapping(
        data["calibration"], "calibration"
    )
    _require_keys(
        "calibration",
        calibration,
        {"hard_iron_T", "mm_row_major_3x3", "covariance_row_major"},
    )
    param_count: int = len(MM_PARAM_NAMES)
    if not hard_iron_known:
        param_count += len(HARD_IRON_PARAM_NAMES)

    covariance: Covariance | None = None
    if calibration["covariance_row_major"] is not None:
        cov: np.ndarray = _coerce_array(
            calibration["covariance_row_major"],
            "calibration.covariance_row_major",
            (param_count * param_count,),
        )
        try:
            covariance = Covariance(cov.reshape(param_count, param_count))
        except CovarianceError as exc:
            raise MagCalYamlError(
                "calibration.covariance_row_major is invalid"
            ) from exc

    statistics: dict[str, object] = _require_mapping(data["statistics"], "statistics")
    _require_keys(
        "statistics",
        statistics,
        {"mse_T2", "chi_sq", "iterations", "refined"},
    )

    inliers: dict[str, object] = _require_mapping(data["inliers"], "inliers")
    _require_keys("inliers", inliers, {"threshold_T", "mask", "residuals_T"})
    mask_value: object = inliers["mask"]
    if not isinstance(mask_value, list) or not all(
        isinstance(flag, bool) for flag in mask_value
    ):
        raise MagCalYamlError("inliers.mask must be a list of booleans")

    try:
        return CalibrationResult(
            params=CalibrationParameters(
                hard_iron_T=_coerce_array(
                    calibration["hard_iron_T"], "calibration.hard_iron_T", (3,)
                ),
                mm=_coerce_array(
                    calibration["mm_row_major_3x3"],
                    "calibration.mm_row_major_3x3",
                    (9,),
                ).reshape(3, 3),
            ),
            covariance=covariance,
            mse_T2=_require_float(statistics["mse_T2"], "statistics.mse_T2"),
            chi_sq=_require_float(statistics["chi_sq"], "statistics.chi_sq"),
            inliers_data=InliersData(
                inliers=np.array(mask_value, dtype=bool),
                residuals_T=_coerce_array(
                    inliers["residuals_T"],
                    "inliers.residuals_T",
                    (len(mask_value),),
                ),
                threshold_T=_require_float(
                    inliers["threshold_T"], "inliers.threshold_T"
                ),
            ),
            method=method,
            ground_truth_norm_T=_require_float(
                model["ground_truth_norm_T"], "model.ground_truth_norm_T"
            ),
            hard_iron_known=hard_iron_known,
            common_axis_used=_require_bool(
                model["common_axis_used"], "model.common_axis_used"
            ),
            iterations=_require_int(statistics["iterations"], "statistics.iterations"),
            refined=_require_bool(statistics["refined"], "statistics.refined"),
        )
    except ValueError as exc:
        raise MagCalYamlError(str(exc)) from exc


def dumps_yaml(result: CalibrationResult) -> str:
    """Serialize a calibration result to deterministic YAML."""
    return yaml.safe_dump(
        result_to_dict(result),
        sort_keys=False,
        indent=2,
        default_flow_style=False,
    )


def loads_yaml(text: str) -> CalibrationResult:
    """Parse a calibration result from YAML text."""
    try:
        loaded: Any = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise MagCalYamlError("Invalid YAML document") from exc
    if not isinstance(loaded, dict):
        raise MagCalYamlError("YAML root must be a mapping")
    return result_from_dict(loaded)


def _require_keys(scope: str, data: dict[str, object], required: set[str]) -> None:
    """Ensure a mapping has exactly the required keys."""
    unknown: set[str] = {key for key in data.keys() if key not in required}
    if unknown:
        raise MagCalYamlError(
            f"Unexpected keys in {scope}: {', '.join(sorted(unknown))}"
        )
    missing: set[str] = {key for key in required if key not in data}
    if missing:
        raise MagCalYamlError(f"Missing keys in {scope}: {', '.join(sorted(missing))}")


def _require_mapping(value: object, name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise MagCalYamlError(f"{name} must be a mapping")
    return value


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise MagCalYamlError(f"{name} must be a string")
    return value


def _require_bool(value: object, name: str) -> bool:
    if not isinstance(value, bool):
        raise MagCalYamlError(f"{name} must be a boolean")
    return value


def _require_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise MagCalYamlError(f"{name} must be an integer")
    return int(value)


def _require_float(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise MagCalYamlError(f"{name} must be a float")
    return float(value)


def _coerce_array(value: object, name: str, shape: tuple[int, ...]) -> np.ndarray:
    """Convert an input to a numpy array with the required shape."""
    try:
        array: np.ndarray = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise MagCalYamlError(f"{name} must be numeric") from exc
    if array.shape != shape:
        raise MagCalYamlError(f"{name} must have shape {shape}")
    return array
