################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Subset samplers for the consensus loop."""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray


# Iterations over which PROSAC grows its pool to the full measurement set
PROSAC_GROWTH_ITERATIONS: int = 200000


class SubsetSamplerError(Exception):
    """Raised when a sampler cannot be built for the given sizes."""


class UniformSampler:
    """Draw subsets uniformly without replacement."""

    def __init__(
        self,
        num_measurements: int,
        subset_size: int,
        rng: np.random.Generator,
    ) -> None:
        if subset_size <= 0 or subset_size > num_measurements:
            raise SubsetSamplerError(
                f"Cannot draw {subset_size} of {num_measurements} measurements"
            )
        self._num_measurements: int = num_measurements
        self._subset_size: int = subset_size
        self._rng: np.random.Generator = rng

    def sample(self) -> NDArray[np.int64]:
        return np.asarray(
            self._rng.choice(
                self._num_measurements, size=self._subset_size, replace=False
            ),
            dtype=np.int64,
        )


class ProgressiveSampler:
    """Draw subsets from a pool of top-quality measurements that grows.

    Implements the PROSAC growth function of Chum and Matas (2005). Early
    subsets come from the best-scored measurements and the pool widens
    until sampling is uniform over the whole set.
    """

    def __init__(
        self,
        quality_scores: NDArray[np.float64],
        subset_size: int,
        rng: np.random.Generator,
    ) -> None:
        scores: NDArray[np.float64] = np.asarray(quality_scores, dtype=np.float64)
        num_measurements: int = int(scores.shape[0])
        if subset_size <= 0 or subset_size > num_measurements:
            raise SubsetSamplerError(
                f"Cannot draw {subset_size} of {num_measurements} measurements"
            )

        # Highest quality first
        self._order: NDArray[np.int64] = np.argsort(-scores, kind="stable")
        self._num_measurements: int = num_measurements
        self._subset_size: int = subset_size
        self._rng: np.random.Generator = rng

        # Expected draws from the initial pool among all T_N draws
        t_n: float = float(PROSAC_GROWTH_ITERATIONS)
        for i in range(subset_size):
            t_n *= float(subset_size - i) / float(num_measurements - i)
        self._t_n: float = t_n
        self._t_n_prime: int = 1
        self._pool_size: int = subset_size
        self._draws: int = 0

    @property
    def pool_size(self) -> int:
        return self._pool_size

    def sample(self) -> NDArray[np.int64]:
        self._draws += 1
        if self._draws >= self._t_n_prime and self._pool_size < self._num_measurements:
            self._pool_size += 1
            t_next: float = (
                self._t_n
                * float(self._pool_size)
                / float(self._pool_size - self._subset_size)
            )
            self._t_n_prime += int(math.ceil(t_next - self._t_n))
            self._t_n = t_next

        pool: NDArray[np.int64] = self._order[: self._pool_size]
        if self._t_n_prime < self._draws or self._pool_size == self._num_measurements:
            picks: NDArray[np.int64] = self._rng.choice(
                self._pool_size, size=self._subset_size, replace=False
            )
            return np.asarray(pool[picks], dtype=np.int64)

        # Newest pool member plus subset_size - 1 drawn from the rest
        rest: NDArray[np.int64] = self._rng.choice(
            self._pool_size - 1, size=self._subset_size - 1, replace=False
        )
        return np.asarray(
            np.concatenate([pool[rest], pool[-1:]]),
            dtype=np.int64,
        )
