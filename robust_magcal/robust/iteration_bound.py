################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Adaptive bound on the number of consensus iterations."""

from __future__ import annotations

import math


def required_iterations(
    inlier_ratio: float,
    subset_size: int,
    confidence: float,
    max_iterations: int,
) -> int:
    """Return the iterations needed to draw one outlier-free subset.

    Computes ``log(1 - p) / log(1 - w^s)`` for confidence ``p``, inlier
    ratio ``w`` and subset size ``s``, clamped to ``[1, max_iterations]``.
    """
    if confidence >= 1.0 or inlier_ratio <= 0.0:
        return max_iterations

    p_clean: float = min(inlier_ratio, 1.0) ** subset_size
    if p_clean >= 1.0:
        return 1
    if p_clean <= 0.0:
        return max_iterations

    # log1p keeps precision when the clean probability underflows toward 0
    iterations: float = math.log(1.0 - confidence) / math.log1p(-p_clean)
    if not math.isfinite(iterations) or iterations >= max_iterations:
        return max_iterations
    return max(int(math.ceil(iterations)), 1)
