# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Update rules for the local optimizer.

An OptimMethod mutates parameters in place given their gradients, a mutable
state map and the effective learning rate for this step:

    method.update(parameters, gradients, state, learning_rate)

The state map belongs to the optimizer's TrainingState, so everything the rule
accumulates between steps (momentum buffers, step counters) is checkpointed
together with the rest of training progress.

SGD delegates the arithmetic to torch.optim.SGD, which applies weight decay,
momentum with dampening, and optionally Nesterov momentum. The torch
optimizer is created lazily on the first update and parked in the state map.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, MutableMapping, Sequence

import torch

from vistra.config.schema import TrainConfig
from vistra.training.scheduler.core import set_learning_rate


class OptimMethod(ABC):
    """In-place parameter update rule."""

    @abstractmethod
    def update(
        self,
        parameters: Sequence[torch.Tensor],
        gradients: Sequence[torch.Tensor],
        state: MutableMapping[str, Any],
        learning_rate: float,
    ) -> None:
        ...

    def state_dict(self, state: MutableMapping[str, Any]) -> dict[str, Any]:
        """Serializable view of whatever this rule keeps in `state`."""
        return dict(state)


class SGD(OptimMethod):
    """
    Stochastic gradient descent with momentum, dampening and weight decay.

    Args:
        momentum: Momentum factor (0 disables the buffer).
        dampening: Dampening applied to the gradient when folding it into the buffer.
        weight_decay: L2 penalty added to the gradient.
        nesterov: Use Nesterov momentum.

    Raises:
        ValueError: Out-of-range hyperparameters, or Nesterov without
                    momentum / with dampening.
    """

    def __init__(
        self,
        momentum: float = 0.0,
        dampening: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
    ) -> None:
        if momentum < 0.0:
            raise ValueError(f"momentum must be >= 0, got {momentum}")
        if weight_decay < 0.0:
            raise ValueError(f"weight_decay must be >= 0, got {weight_decay}")
        if nesterov and (momentum <= 0.0 or dampening != 0.0):
            raise ValueError("Nesterov momentum requires momentum > 0 and zero dampening")
        self.momentum = momentum
        self.dampening = dampening
        self.weight_decay = weight_decay
        self.nesterov = nesterov

    @classmethod
    def from_config(cls, config: TrainConfig) -> "SGD":
        return cls(
            momentum=config.momentum,
            dampening=config.dampening,
            weight_decay=config.weight_decay,
            nesterov=config.nesterov,
        )

    def _torch_optimizer(
        self,
        parameters: Sequence[torch.Tensor],
        state: MutableMapping[str, Any],
        learning_rate: float,
    ) -> torch.optim.SGD:
        optimizer = state.get("optimizer")
        if optimizer is None:
            optimizer = torch.optim.SGD(
                list(parameters),
                lr=learning_rate,
                momentum=self.momentum,
                dampening=self.dampening,
                weight_decay=self.weight_decay,
                nesterov=self.nesterov,
            )
            pending = state.pop("optimizer_state", None)
            if pending is not None:
                optimizer.load_state_dict(pending)
            state["optimizer"] = optimizer
        return optimizer

    def update(
        self,
        parameters: Sequence[torch.Tensor],
        gradients: Sequence[torch.Tensor],
        state: MutableMapping[str, Any],
        learning_rate: float,
    ) -> None:
        if len(parameters) != len(gradients):
            raise ValueError(
                f"got {len(parameters)} parameters but {len(gradients)} gradients"
            )

        optimizer = self._torch_optimizer(parameters, state, learning_rate)

        for param, grad in zip(parameters, gradients):
            if param.grad is not grad:
                param.grad = grad

        set_learning_rate(optimizer, learning_rate)
        optimizer.step()
        state["steps"] = state.get("steps", 0) + 1

    def state_dict(self, state: MutableMapping[str, Any]) -> dict[str, Any]:
        optimizer = state.get("optimizer")
        snapshot: dict[str, Any] = {"steps": state.get("steps", 0)}
        if optimizer is not None:
            snapshot["optimizer_state"] = copy.deepcopy(optimizer.state_dict())
        elif "optimizer_state" in state:
            snapshot["optimizer_state"] = state["optimizer_state"]
        return snapshot
