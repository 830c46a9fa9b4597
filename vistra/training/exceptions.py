# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Errors raised by the training control loop.

Every loop-level failure names the phase it came from (training step,
validation, checkpoint) and the iteration it happened at, so a crashed run
says where it died without anyone digging through logs.

CheckpointWriteError is the one recoverable member. The optimizer logs it,
records it in the TrainingResult and keeps training. Everything else ends
the loop.
"""

from enum import Enum
from typing import Optional


class TrainingPhase(str, Enum):
    """States of the local optimizer's control loop."""

    RUNNING = "running"
    VALIDATION = "validation"
    CHECKPOINT = "checkpoint"
    TERMINATED = "terminated"


class TrainingError(Exception):
    """
    Base for control-loop failures.

    Attributes:
        phase: Phase the loop was in when the error happened.
        iteration: Iteration count at that moment (None if unknown).
    """

    def __init__(
        self,
        message: str,
        phase: TrainingPhase,
        iteration: Optional[int] = None,
    ) -> None:
        self.phase = phase
        self.iteration = iteration
        where = f"{phase.value} phase"
        if iteration is not None:
            where += f", iteration {iteration}"
        super().__init__(f"{message} [{where}]")


class TrainingStepError(TrainingError):
    """A batch pull, forward, backward or update failed."""

    def __init__(self, message: str, iteration: Optional[int] = None) -> None:
        super().__init__(message, TrainingPhase.RUNNING, iteration)


class ModelDivergenceError(TrainingStepError):
    """The loss became NaN or infinite."""


class ValidationPhaseError(TrainingError):
    """The validation pass failed."""

    def __init__(self, message: str, iteration: Optional[int] = None) -> None:
        super().__init__(message, TrainingPhase.VALIDATION, iteration)


class CheckpointWriteError(TrainingError):
    """A checkpoint could not be written. Recoverable; training may continue."""

    def __init__(self, message: str, iteration: Optional[int] = None) -> None:
        super().__init__(message, TrainingPhase.CHECKPOINT, iteration)
