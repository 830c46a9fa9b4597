# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Triggers: predicates over training progress.

A trigger answers one question about the optimizer's TrainingState: "should
the action I'm attached to happen now?" The action itself (validate,
checkpoint, stop) is carried out by the LocalOptimizer. Triggers have no side
effects and keep no memory. Periodic triggers cannot double-fire because the
iteration counter only ever moves forward, one step at a time.

  several_iteration(n)  true on iterations n, 2n, 3n, ... (never on 0)
  max_iteration(n)      false below n, true from n on (terminal)
  every_epoch()         true on the step where a new source pass began
  max_epoch(n)          true once more than n epochs have started
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from vistra.config.schema import TriggerConfig

if TYPE_CHECKING:
    from vistra.training.engine.core import TrainingState


class Trigger(ABC):
    """Base trigger. Call it with the current TrainingState."""

    @abstractmethod
    def __call__(self, state: "TrainingState") -> bool:
        ...

    @staticmethod
    def several_iteration(n: int) -> "Trigger":
        return SeveralIteration(n)

    @staticmethod
    def max_iteration(n: int) -> "Trigger":
        return MaxIteration(n)

    @staticmethod
    def every_epoch() -> "Trigger":
        return EveryEpoch()

    @staticmethod
    def max_epoch(n: int) -> "Trigger":
        return MaxEpoch(n)

    @staticmethod
    def from_config(config: Optional[TriggerConfig]) -> Optional["Trigger"]:
        """Build a trigger from its config form; None stays None."""
        if config is None:
            return None
        if config.kind == "every_epoch":
            return EveryEpoch()
        if config.n is None:
            raise ValueError(f"trigger {config.kind!r} requires n")
        builders = {
            "several_iteration": SeveralIteration,
            "max_iteration": MaxIteration,
            "max_epoch": MaxEpoch,
        }
        return builders[config.kind](config.n)


def _check_positive(n: int) -> int:
    if n < 1:
        raise ValueError(f"trigger period/threshold must be >= 1, got {n}")
    return n


class SeveralIteration(Trigger):
    def __init__(self, n: int) -> None:
        self.n = _check_positive(n)

    def __call__(self, state: "TrainingState") -> bool:
        return state.iteration > 0 and state.iteration % self.n == 0

    def __repr__(self) -> str:
        return f"several_iteration({self.n})"


class MaxIteration(Trigger):
    def __init__(self, n: int) -> None:
        self.n = _check_positive(n)

    def __call__(self, state: "TrainingState") -> bool:
        return state.iteration >= self.n

    def __repr__(self) -> str:
        return f"max_iteration({self.n})"


class EveryEpoch(Trigger):
    def __call__(self, state: "TrainingState") -> bool:
        return state.epoch_boundary

    def __repr__(self) -> str:
        return "every_epoch()"


class MaxEpoch(Trigger):
    def __init__(self, n: int) -> None:
        self.n = _check_positive(n)

    def __call__(self, state: "TrainingState") -> bool:
        return state.epoch > self.n

    def __repr__(self) -> str:
        return f"max_epoch({self.n})"
