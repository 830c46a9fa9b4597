# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Learning-rate schedules for the SGD loop.

Each schedule owns its base rate and answers `rate(iteration)`, where
`iteration` is the number of updates already applied (0 for the first step).
The optimizer queries the schedule once per step, right before the update, and
pushes the result into the torch param groups with `set_learning_rate`.

  constant  base / (1 + iteration * decay)        (decay=0 gives a flat rate)
  step      base * gamma ** (iteration // step_size)
  poly      base * (1 - iteration / max_iteration) ** power, 0 from max_iteration on

These are plain functions of the iteration rather than torch LRScheduler
objects, so that a schedule can be evaluated at any point without replaying
history.
"""

from abc import ABC, abstractmethod

from vistra.config.schema import ScheduleConfig


class LearningRateSchedule(ABC):
    """Maps an iteration count to the effective learning rate."""

    def __init__(self, base_rate: float) -> None:
        if base_rate <= 0.0:
            raise ValueError(f"base_rate must be positive, got {base_rate}")
        self.base_rate = base_rate

    @abstractmethod
    def rate(self, iteration: int) -> float:
        ...

    def __call__(self, iteration: int) -> float:
        return self.rate(iteration)


class ConstantSchedule(LearningRateSchedule):
    """Hyperbolic decay: base / (1 + iteration * decay)."""

    def __init__(self, base_rate: float, decay: float = 0.0) -> None:
        super().__init__(base_rate)
        if decay < 0.0:
            raise ValueError(f"decay must be >= 0, got {decay}")
        self.decay = decay

    def rate(self, iteration: int) -> float:
        return self.base_rate / (1.0 + max(iteration, 0) * self.decay)

    def __repr__(self) -> str:
        return f"ConstantSchedule(base_rate={self.base_rate}, decay={self.decay})"


class StepSchedule(LearningRateSchedule):
    """Staircase: multiply by gamma every `step_size` iterations."""

    def __init__(self, base_rate: float, step_size: int, gamma: float = 0.1) -> None:
        super().__init__(base_rate)
        if step_size < 1:
            raise ValueError(f"step_size must be >= 1, got {step_size}")
        self.step_size = step_size
        self.gamma = gamma

    def rate(self, iteration: int) -> float:
        return self.base_rate * self.gamma ** (max(iteration, 0) // self.step_size)

    def __repr__(self) -> str:
        return f"StepSchedule(base_rate={self.base_rate}, step_size={self.step_size}, gamma={self.gamma})"


class PolySchedule(LearningRateSchedule):
    """Polynomial decay to zero at `max_iteration`, clamped there."""

    def __init__(self, base_rate: float, power: float, max_iteration: int) -> None:
        super().__init__(base_rate)
        if max_iteration < 1:
            raise ValueError(f"max_iteration must be >= 1, got {max_iteration}")
        self.power = power
        self.max_iteration = max_iteration

    def rate(self, iteration: int) -> float:
        if iteration >= self.max_iteration:
            return 0.0
        progress = max(iteration, 0) / self.max_iteration
        return self.base_rate * (1.0 - progress) ** self.power

    def __repr__(self) -> str:
        return (
            f"PolySchedule(base_rate={self.base_rate}, power={self.power}, "
            f"max_iteration={self.max_iteration})"
        )


def build_schedule(config: ScheduleConfig, base_rate: float) -> LearningRateSchedule:
    """Build a schedule from its validated config section."""
    if config.kind == "step":
        if config.step_size is None:
            raise ValueError("step schedule requires step_size")
        return StepSchedule(base_rate, step_size=config.step_size, gamma=config.gamma)
    if config.kind == "poly":
        if config.max_iteration is None:
            raise ValueError("poly schedule requires max_iteration")
        return PolySchedule(base_rate, power=config.power, max_iteration=config.max_iteration)
    return ConstantSchedule(base_rate, decay=config.decay)


def set_learning_rate(
    optimizer: object,
    lr: float,
) -> None:
    """
    Set the learning rate on all parameter groups of an optimizer.

    Args:
        optimizer: A torch.optim.Optimizer.
        lr: The learning rate to set.
    """
    for param_group in optimizer.param_groups:  # type: ignore[attr-defined]
        param_group["lr"] = lr
