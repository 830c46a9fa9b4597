# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for runtime bootstrap and environment checks.
"""

import os
import random
from unittest import mock

import pytest
import torch

from vistra.config.schema import GlobalConfig
from vistra.runtime.bootstrap import bootstrap, set_deterministic_seed
from vistra.runtime.environment import check_minimum_python, get_system_info


class TestDeterministicSeed:
    def test_same_seed_same_draws(self) -> None:
        set_deterministic_seed(123)
        first = (random.random(), torch.rand(2))
        set_deterministic_seed(123)
        second = (random.random(), torch.rand(2))
        assert first[0] == second[0]
        assert torch.equal(first[1], second[1])

    def test_sets_hash_seed(self) -> None:
        set_deterministic_seed(5)
        assert os.environ["PYTHONHASHSEED"] == "5"


class TestEnvironment:
    def test_system_info(self) -> None:
        info = get_system_info()
        assert info.cpu_count >= 1
        assert info.torch_version == torch.__version__

    def test_old_python_rejected(self) -> None:
        with mock.patch("vistra.runtime.environment.get_python_version", return_value=(3, 8, 0)):
            with pytest.raises(RuntimeError, match="requires Python"):
                check_minimum_python()


class TestBootstrap:
    def test_bootstrap_seeds_process(self) -> None:
        bootstrap(GlobalConfig(config_version="1.0.0", seed=77, log_level="WARNING"))
        drawn = torch.rand(1)
        set_deterministic_seed(77)
        assert torch.equal(drawn, torch.rand(1))
