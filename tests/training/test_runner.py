# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
End-to-end runs over a real image folder, built from config the way the CLI
builds them.
"""

from pathlib import Path

import pytest
import torch

from vistra.config.loader import load_config
from vistra.config.schema import DataConfig, TrainConfig
from vistra.data.exceptions import EmptyCorpusError
from vistra.training.engine.runner import build_assemblers, build_local_optimizer, run_training


def _configs(train_config_file: Path) -> tuple[DataConfig, TrainConfig]:
    config = load_config(train_config_file)
    assert config.data is not None and config.train is not None
    return config.data, config.train


class TestBuild:
    def test_assemblers_from_folder(self, train_config_file: Path) -> None:
        """Training streams random crops forever, validation is one bounded pass."""
        data, train = _configs(train_config_file)
        train_data, validation_data = build_assemblers(data, train, seed=1)

        assert train_data.source.looped
        assert validation_data is not None and not validation_data.source.looped
        with validation_data.open() as stream:
            batches = list(stream)
        assert sum(b.size for b in batches) == 6
        assert batches[0].images.shape == (4, 3, 64, 64)

    def test_validation_skipped_without_trigger(self, train_config_file: Path) -> None:
        data, train = _configs(train_config_file)
        train = train.model_copy(update={"test_trigger": None})
        optimizer = build_local_optimizer(data, train, seed=1, model=torch.nn.Sequential(
            torch.nn.AdaptiveAvgPool2d(1), torch.nn.Flatten(), torch.nn.Linear(3, 3)
        ))
        assert optimizer.validation_data is None

    def test_too_many_classes_for_network(self, train_config_file: Path) -> None:
        data, train = _configs(train_config_file)
        with pytest.raises(ValueError, match="classes"):
            build_assemblers(data, train.model_copy(update={"num_classes": 2}))

    def test_missing_split(self, train_config_file: Path) -> None:
        data, train = _configs(train_config_file)
        with pytest.raises(EmptyCorpusError):
            build_assemblers(data.model_copy(update={"validation_directory": "test"}), train)


class TestRunTraining:
    def test_googlenet_run_with_validation_and_checkpoint(
        self, train_config_file: Path, tmp_path: Path
    ) -> None:
        """Two iterations of GoogLeNet: validated and checkpointed at iteration 2."""
        data, train = _configs(train_config_file)
        result = run_training(data, train, seed=7)

        assert result.iteration == 2
        assert [p.name for p in result.checkpoints] == ["iter_00000002"]
        assert result.final_validation is not None
        assert set(result.final_validation) == {"top1_accuracy", "top5_accuracy"}
        assert result.final_validation["top1_accuracy"].count == 6

    def test_resume_continues_from_cache(self, train_config_file: Path, tmp_path: Path) -> None:
        """Resuming from the cache directory picks up at the latest checkpoint."""
        data, train = _configs(train_config_file)
        run_training(data, train, seed=7)

        longer = train.model_copy(update={"end_when": train.end_when.model_copy(update={"n": 3})})
        result = run_training(data, longer, seed=7, resume_from=tmp_path / "cache")
        assert result.iteration == 3

    def test_resume_without_checkpoint(self, train_config_file: Path, tmp_path: Path) -> None:
        data, train = _configs(train_config_file)
        with pytest.raises(FileNotFoundError):
            run_training(data, train, resume_from=tmp_path / "empty")
