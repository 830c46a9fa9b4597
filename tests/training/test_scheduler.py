# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for learning-rate schedules.
"""

import pytest
import torch

from vistra.config.schema import ScheduleConfig
from vistra.training.scheduler.core import (
    ConstantSchedule,
    PolySchedule,
    StepSchedule,
    build_schedule,
    set_learning_rate,
)


class TestConstantSchedule:
    def test_flat_without_decay(self) -> None:
        """decay=0 keeps the base rate forever."""
        schedule = ConstantSchedule(0.1)
        assert schedule(0) == schedule(10_000) == 0.1

    def test_hyperbolic_decay(self) -> None:
        """base / (1 + iteration * decay)."""
        schedule = ConstantSchedule(1.0, decay=0.5)
        assert schedule(2) == pytest.approx(0.5)

    def test_rejects_bad_base(self) -> None:
        """The base rate must be positive."""
        with pytest.raises(ValueError):
            ConstantSchedule(0.0)


class TestStepSchedule:
    def test_staircase(self) -> None:
        """The AlexNet recipe: x0.1 every 100000 iterations."""
        schedule = StepSchedule(0.01, step_size=100_000, gamma=0.1)
        assert schedule(0) == pytest.approx(0.01)
        assert schedule(99_999) == pytest.approx(0.01)
        assert schedule(100_000) == pytest.approx(0.001)
        assert schedule(250_000) == pytest.approx(0.0001)


class TestPolySchedule:
    def test_decays_to_zero(self) -> None:
        """The GoogLeNet recipe: sqrt decay reaching 0 at max_iteration."""
        schedule = PolySchedule(0.01, power=0.5, max_iteration=100)
        assert schedule(0) == pytest.approx(0.01)
        assert schedule(75) == pytest.approx(0.01 * 0.5)
        assert schedule(100) == 0.0
        assert schedule(150) == 0.0

    def test_monotonic(self) -> None:
        """Rates never increase."""
        schedule = PolySchedule(1.0, power=2.0, max_iteration=50)
        rates = [schedule(i) for i in range(60)]
        assert all(a >= b for a, b in zip(rates, rates[1:]))


class TestBuildSchedule:
    def test_from_config(self) -> None:
        """Each config kind builds the matching schedule."""
        assert isinstance(build_schedule(ScheduleConfig(), 0.1), ConstantSchedule)
        assert isinstance(
            build_schedule(ScheduleConfig(kind="step", step_size=10), 0.1), StepSchedule
        )
        poly = build_schedule(ScheduleConfig(kind="poly", max_iteration=10, power=1.0), 0.1)
        assert isinstance(poly, PolySchedule)
        assert poly(5) == pytest.approx(0.05)

    def test_missing_parameters_are_value_errors(self) -> None:
        """step and poly need their length parameter even when validation was bypassed."""
        with pytest.raises(ValueError, match="step_size"):
            build_schedule(ScheduleConfig.model_construct(kind="step", step_size=None), 0.1)
        with pytest.raises(ValueError, match="max_iteration"):
            build_schedule(ScheduleConfig.model_construct(kind="poly", max_iteration=None), 0.1)

    def test_set_learning_rate(self) -> None:
        """All param groups get the new rate."""
        params = [torch.nn.Parameter(torch.zeros(1)), torch.nn.Parameter(torch.zeros(1))]
        optimizer = torch.optim.SGD([{"params": [params[0]]}, {"params": [params[1]]}], lr=1.0)
        set_learning_rate(optimizer, 0.25)
        assert [g["lr"] for g in optimizer.param_groups] == [0.25, 0.25]
