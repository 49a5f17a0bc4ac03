################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""High-level configuration wrapper for robust magnetometer calibration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import yaml

from robust_magcal.robust.robust_method import RobustMethod

from .calibration_params import MagCalParams
from .calibration_params import MagCalParamsError
from .calibration_params import params_from_dict


class MagCalConfigError(Exception):
    """Raised when calibration configuration validation fails."""


@dataclass(frozen=True)
class MagCalConfig:
    """Convenience wrapper around calibration parameters."""

    params: MagCalParams

    def __init__(self, params: MagCalParams) -> None:
        """Initialize the configuration wrapper and validate."""
        object.__setattr__(self, "params", params)
        self.validate()

    @classmethod
    def from_yaml(cls, text: str) -> MagCalConfig:
        """Parse a configuration from YAML text."""
        try:
            loaded: Any = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise MagCalConfigError("Invalid YAML configuration") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise MagCalConfigError("YAML root must be a mapping")
        try:
            params: MagCalParams = params_from_dict(loaded)
        except (MagCalParamsError, TypeError) as exc:
            raise MagCalConfigError(str(exc)) from exc
        return cls(params)

    def validate(self) -> None:
        """Validate parameter invariants and cross-namespace policies."""
        try:
            self.params.validate()
        except MagCalParamsError as exc:
            raise MagCalConfigError(str(exc)) from exc

    def method(self) -> RobustMethod:
        """Return the configured robust method."""
        return RobustMethod(self.params.consensus.method)

    def uses_median(self) -> bool:
        """Return True if candidates are scored by their median residual."""
        return self.method().uses_median

    def uses_quality_scores(self) -> bool:
        """Return True if subsets are drawn according to quality scores."""
        return self.method().uses_quality_scores
