# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the SGD update rule.
"""

import pytest
import torch

from vistra.config.presets import preset_train_config
from vistra.training.optimizer.core import SGD


def _param(value: float) -> torch.nn.Parameter:
    return torch.nn.Parameter(torch.tensor([value]))


class TestSGDUpdate:
    def test_plain_step(self) -> None:
        """Without momentum or decay: w <- w - lr * g."""
        w = _param(1.0)
        state: dict = {}
        SGD().update([w], [torch.tensor([0.5])], state, learning_rate=0.1)
        assert w.item() == pytest.approx(0.95)
        assert state["steps"] == 1

    def test_weight_decay(self) -> None:
        """Weight decay adds wd * w to the gradient."""
        w = _param(2.0)
        SGD(weight_decay=0.1).update([w], [torch.tensor([0.0])], {}, learning_rate=1.0)
        assert w.item() == pytest.approx(1.8)

    def test_momentum_accumulates_in_state(self) -> None:
        """The momentum buffer lives in the caller's state map across steps."""
        w = _param(0.0)
        state: dict = {}
        method = SGD(momentum=0.9)
        method.update([w], [torch.tensor([1.0])], state, learning_rate=1.0)
        method.update([w], [torch.tensor([1.0])], state, learning_rate=1.0)
        # v1 = 1, v2 = 0.9 * 1 + 1 = 1.9; w = -1 - 1.9
        assert w.item() == pytest.approx(-2.9)
        assert state["steps"] == 2

    def test_learning_rate_applied_each_step(self) -> None:
        """The rate passed in wins over whatever the torch optimizer had."""
        w = _param(0.0)
        state: dict = {}
        method = SGD()
        method.update([w], [torch.tensor([1.0])], state, learning_rate=1.0)
        method.update([w], [torch.tensor([1.0])], state, learning_rate=0.5)
        assert w.item() == pytest.approx(-1.5)

    def test_length_mismatch(self) -> None:
        """Parameters and gradients must pair up."""
        with pytest.raises(ValueError):
            SGD().update([_param(0.0)], [], {}, learning_rate=0.1)


class TestSGDState:
    def test_state_dict_round_trip_keeps_momentum(self) -> None:
        """Restoring a snapshot continues with the saved momentum buffer."""
        w1 = _param(0.0)
        state1: dict = {}
        method = SGD(momentum=0.9)
        method.update([w1], [torch.tensor([1.0])], state1, learning_rate=1.0)
        snapshot = method.state_dict(state1)
        assert snapshot["steps"] == 1
        assert "optimizer_state" in snapshot

        w2 = _param(w1.item())
        state2 = dict(snapshot)
        method.update([w2], [torch.tensor([1.0])], state2, learning_rate=1.0)
        method.update([w1], [torch.tensor([1.0])], state1, learning_rate=1.0)
        assert w2.item() == pytest.approx(w1.item())
        assert state2["steps"] == 2


class TestSGDConfig:
    def test_nesterov_requires_momentum(self) -> None:
        """Nesterov without momentum is rejected."""
        with pytest.raises(ValueError):
            SGD(momentum=0.0, nesterov=True)

    def test_from_preset(self) -> None:
        """The AlexNet recipe maps onto the update rule's hyperparameters."""
        method = SGD.from_config(preset_train_config("alexnet"))
        assert method.momentum == 0.9
        assert method.weight_decay == 0.0005
        assert not method.nesterov
