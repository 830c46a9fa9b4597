# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Wiring for a full training run from config.

    train split  -> ImageFolderSource(looped)  -> decode, random crop, normalize
    val split    -> ImageFolderSource(bounded) -> decode, centre crop, normalize
    both         -> BatchAssembler(parallelism, buffer)
    net          -> build_model, SGD, schedule, triggers, Top1 / Top5
    everything   -> LocalOptimizer.optimize()

Kept apart from the CLI so tests and notebooks can start a run with the same
code path.
"""

import logging
from pathlib import Path
from typing import Optional

import torch.nn as nn

from vistra.config.schema import DataConfig, TrainConfig
from vistra.data.assembler import BatchAssembler
from vistra.data.source import ImageFolderSource
from vistra.data.transforms import ImageCropper, ImageNormalizer, PathToImage, Pipeline
from vistra.logging.logger import get_logger
from vistra.model.factory import build_model
from vistra.training.checkpoint.core import find_latest_checkpoint, load_checkpoint
from vistra.training.engine.core import LocalOptimizer, TrainingResult
from vistra.training.metrics.core import Top1Accuracy, Top5Accuracy
from vistra.training.optimizer.core import SGD
from vistra.training.scheduler.core import build_schedule
from vistra.training.triggers import Trigger
from vistra.utils.paths import ensure_directory, resolve_split_directory

logger: logging.Logger = get_logger(__name__)


def build_pipeline(data: DataConfig, image_size: int, train: bool) -> Pipeline:
    """
    Decode, crop to `image_size` (random for training, centred otherwise) and normalize.
    """
    return Pipeline(
        [
            PathToImage(short_edge=data.short_edge),
            ImageCropper(image_size, image_size, random=train),
            ImageNormalizer(data.mean, data.std),
        ]
    )


def build_assemblers(
    data: DataConfig,
    train: TrainConfig,
    seed: int = 42,
    with_validation: bool = True,
) -> tuple[BatchAssembler, Optional[BatchAssembler]]:
    """
    Build the looped training assembler and, if asked, the bounded validation one.

    Raises:
        EmptyCorpusError: A split directory is missing or has no images.
        ValueError: The corpus has more classes than the network outputs, or
                    a split escapes the data folder.
    """
    folder = Path(data.folder)
    train_source = ImageFolderSource(
        resolve_split_directory(folder, data.train_directory),
        looped=True,
        extensions=data.extensions,
        shuffle=data.shuffle,
        seed=seed,
        reshuffle_each_pass=data.reshuffle_each_pass,
    )
    if len(train_source.classes) > train.num_classes:
        raise ValueError(
            f"training split has {len(train_source.classes)} classes "
            f"but the network has {train.num_classes} outputs"
        )

    train_data = BatchAssembler(
        train_source,
        build_pipeline(data, train.image_size, train=True),
        batch_size=train.batch_size,
        parallelism=data.parallelism,
        buffer=data.buffer,
        on_error=data.on_transform_error,
        seed=seed,
    )

    if not with_validation:
        return train_data, None

    validation_source = ImageFolderSource(
        resolve_split_directory(folder, data.validation_directory),
        looped=False,
        extensions=data.extensions,
        shuffle=False,
        seed=seed,
    )
    if validation_source.classes != train_source.classes[: len(validation_source.classes)]:
        logger.warning(
            "Validation classes do not line up with training classes",
            extra={
                "train_classes": len(train_source.classes),
                "validation_classes": len(validation_source.classes),
            },
        )

    validation_data = BatchAssembler(
        validation_source,
        build_pipeline(data, train.image_size, train=False),
        batch_size=train.batch_size,
        parallelism=data.parallelism,
        buffer=data.buffer,
        on_error=data.on_transform_error,
        seed=seed,
    )
    return train_data, validation_data


def build_local_optimizer(
    data: DataConfig,
    train: TrainConfig,
    seed: int = 42,
    model: Optional[nn.Module] = None,
) -> LocalOptimizer:
    """
    Assemble a LocalOptimizer from config, with validation and caching wired in
    when their triggers are configured.
    """
    test_trigger = Trigger.from_config(train.test_trigger)
    cache_trigger = Trigger.from_config(train.cache_trigger)
    end_when = Trigger.from_config(train.end_when)
    if end_when is None:
        raise ValueError("end_when is required")

    train_data, validation_data = build_assemblers(
        data, train, seed=seed, with_validation=test_trigger is not None
    )
    if model is None:
        model = build_model(train.net, train.num_classes)

    optimizer = LocalOptimizer(
        model=model,
        train_data=train_data,
        criterion=nn.CrossEntropyLoss(),
        optim_method=SGD.from_config(train),
        schedule=build_schedule(train.schedule, train.learning_rate),
        end_when=end_when,
        validation_data=validation_data,
        log_interval=train.log_interval,
    )

    if test_trigger is not None:
        optimizer.set_validation_trigger(test_trigger)
        optimizer.add_validation(Top1Accuracy())
        optimizer.add_validation(Top5Accuracy())

    if cache_trigger is not None:
        if train.cache_directory is None:
            raise ValueError("cache_trigger is set but cache_directory is not")
        optimizer.set_cache(ensure_directory(Path(train.cache_directory)), cache_trigger)

    return optimizer


def run_training(
    data: DataConfig,
    train: TrainConfig,
    seed: int = 42,
    resume_from: Optional[Path] = None,
) -> TrainingResult:
    """
    Build everything from config, optionally restore a checkpoint, and train.

    Args:
        resume_from: A checkpoint directory, or a cache directory in which
                     case its latest checkpoint is used.

    Raises:
        FileNotFoundError: `resume_from` holds no checkpoint.
    """
    optimizer = build_local_optimizer(data, train, seed=seed)

    if resume_from is not None:
        checkpoint_dir = resume_from
        if not (resume_from / "state.pt").is_file():
            latest = find_latest_checkpoint(resume_from)
            if latest is None:
                raise FileNotFoundError(f"No checkpoint found in {resume_from}")
            checkpoint_dir = latest
        state = load_checkpoint(checkpoint_dir, optimizer.model)
        optimizer.load_state_dict(state)
        logger.info(
            "Resuming training",
            extra={"checkpoint": str(checkpoint_dir), "iteration": optimizer.state.iteration},
        )

    return optimizer.optimize()
