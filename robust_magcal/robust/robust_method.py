################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Robust estimation method identifiers."""

from __future__ import annotations

from enum import Enum


class RobustMethod(str, Enum):
    """Sample-consensus strategy used to reject outliers."""

    RANSAC = "ransac"
    MSAC = "msac"
    LMEDS = "lmeds"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def uses_median(self) -> bool:
        """True if candidates are ranked by their median squared residual."""
        return self in (RobustMethod.LMEDS, RobustMethod.PROMEDS)

    @property
    def uses_quality_scores(self) -> bool:
        """True if subsets are drawn by decreasing measurement quality."""
        return self in (RobustMethod.PROSAC, RobustMethod.PROMEDS)
