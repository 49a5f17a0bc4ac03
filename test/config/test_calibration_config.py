################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Tests for the calibration configuration wrapper."""

from __future__ import annotations

import pytest

from robust_magcal.config.calibration_config import MagCalConfig
from robust_magcal.config.calibration_config import MagCalConfigError
from robust_magcal.config.calibration_params import ConsensusParams
from robust_magcal.config.calibration_params import MagCalParams
from robust_magcal.robust.robust_method import RobustMethod


def test_from_yaml_selects_method() -> None:
    """YAML text should select the robust method and its family."""
    text: str = (
        "consensus:\n"
        "  method: promeds\n"
        "  stop_threshold_T: 2.0e-9\n"
        "refinement:\n"
        "  keep_covariance: false\n"
    )
    config: MagCalConfig = MagCalConfig.from_yaml(text)
    assert config.method() is RobustMethod.PROMEDS
    assert config.uses_median()
    assert config.uses_quality_scores()
    assert config.params.consensus.stop_threshold_T == 2.0e-9
    assert not config.params.refinement.keep_covariance


def test_empty_yaml_uses_defaults() -> None:
    """An empty document yields the default tree."""
    config: MagCalConfig = MagCalConfig.from_yaml("")
    assert config.params == MagCalParams.defaults()
    assert config.method() is RobustMethod.MSAC
    assert not config.uses_median()
    assert not config.uses_quality_scores()


@pytest.mark.parametrize(
    "text",
    [
        "consensus: [1, 2",
        "- 1\n- 2\n",
        "consensus:\n  confidence: 2.0\n",
        "other: {}\n",
    ],
)
def test_invalid_yaml_rejected(text: str) -> None:
    """Malformed or invalid documents raise MagCalConfigError."""
    with pytest.raises(MagCalConfigError):
        MagCalConfig.from_yaml(text)


def test_wrapper_validates_on_init() -> None:
    """Constructing the wrapper validates the tree."""
    params: MagCalParams = MagCalParams.defaults().replace(
        consensus=ConsensusParams(threshold_T=0.0)
    )
    with pytest.raises(MagCalConfigError):
        MagCalConfig(params)
