################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Run state machine guarding a calibration run."""

from __future__ import annotations

import logging
from enum import Enum


_LOG: logging.Logger = logging.getLogger(__name__)


class RunState(Enum):
    """Phase of a calibration run."""

    IDLE = "idle"
    SAMPLING = "sampling"
    FITTING = "fitting"
    SCORING = "scoring"
    CONVERGED = "converged"
    FAILED = "failed"


class RunStateError(Exception):
    """Raised on a transition the run lifecycle does not allow."""


# Terminal and idle states may start a new run
_RESTARTABLE: frozenset[RunState] = frozenset(
    {RunState.IDLE, RunState.CONVERGED, RunState.FAILED}
)

_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.SAMPLING}),
    RunState.SAMPLING: frozenset({RunState.FITTING, RunState.FAILED}),
    # Refinement re-enters FITTING, also straight after a discarded subset
    RunState.FITTING: frozenset(
        {
            RunState.SCORING,
            RunState.SAMPLING,
            RunState.FITTING,
            RunState.CONVERGED,
            RunState.FAILED,
        }
    ),
    RunState.SCORING: frozenset(
        {
            RunState.SAMPLING,
            RunState.FITTING,
            RunState.CONVERGED,
            RunState.FAILED,
        }
    ),
    RunState.CONVERGED: frozenset({RunState.SAMPLING}),
    RunState.FAILED: frozenset({RunState.SAMPLING}),
}


class RunStateMachine:
    """Track the phase of the current run and reject invalid transitions."""

    def __init__(self) -> None:
        self._state: RunState = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True while a run is between start and its terminal state."""
        return self._state not in _RESTARTABLE

    def transition(self, target: RunState) -> None:
        """Move to ``target``, raising RunStateError if not allowed."""
        if target not in _TRANSITIONS[self._state]:
            raise RunStateError(
                f"Invalid transition {self._state.value} -> {target.value}"
            )
        _LOG.debug("Run state %s -> %s", self._state.value, target.value)
        self._state = target

    def fail(self) -> None:
        """Move to FAILED from any running state."""
        if self.is_running:
            self.transition(RunState.FAILED)
