# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the vistra CLI.

Each function here corresponds to one CLI subcommand and returns an exit
code. No print() calls. Everything goes through the structured logger.

Config precedence for `train`, lowest to highest:
  built-in net preset < YAML config file < command-line flags
"""

import argparse
import logging
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from vistra.cli.exit_codes import CONFIG_ERROR, RUNTIME_ERROR, SUCCESS, USER_ERROR
from vistra.config.exceptions import ConfigError, ConfigValidationError
from vistra.config.loader import load_config
from vistra.config.presets import preset_train_config
from vistra.config.schema import DataConfig, GlobalConfig, TrainConfig, VistraConfig
from vistra.data.exceptions import EmptyCorpusError
from vistra.logging.logger import get_logger
from vistra.runtime.bootstrap import bootstrap

ModelT = TypeVar("ModelT", bound=BaseModel)

_DEFAULT_NET = "alexnet"


def _with_overrides(model: ModelT, overrides: dict[str, Any]) -> ModelT:
    """Re-validate `model` with the non-None `overrides` applied."""
    updates = {key: value for key, value in overrides.items() if value is not None}
    if not updates:
        return model
    try:
        return type(model).model_validate({**model.model_dump(), **updates})
    except ValidationError as err:
        raise ConfigValidationError(f"Invalid command-line override:\n{err}") from err


def _load_and_bootstrap(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, Optional[VistraConfig], logging.Logger]:
    """
    The shared setup every command needs: load config, apply --seed, run bootstrap.

    Returns a tuple of (exit_code, config, logger). If exit_code is not SUCCESS,
    the caller should return it immediately.
    """
    logger = get_logger(f"vistra.cli.{command_name}", log_level=args.log_level)

    config = None
    if args.config is not None:
        try:
            config = load_config(Path(args.config))
        except ConfigError as err:
            logger.error(
                "Configuration error",
                extra={"command": command_name, "error": str(err)},
            )
            return CONFIG_ERROR, None, logger

    if config is not None:
        global_config = config.global_config
    else:
        global_config = GlobalConfig(config_version="1.0.0", log_level=args.log_level)
        logger.debug(
            "No config provided, running with defaults",
            extra={"command": command_name},
        )

    try:
        global_config = _with_overrides(global_config, {"seed": args.seed})
        bootstrap(global_config)
    except ConfigError as err:
        logger.error("Configuration error", extra={"command": command_name, "error": str(err)})
        return CONFIG_ERROR, None, logger
    except RuntimeError as err:
        logger.error("Environment check failed", extra={"error": str(err)})
        return RUNTIME_ERROR, None, logger

    config = VistraConfig(
        global_config=global_config,
        data=config.data if config is not None else None,
        train=config.train if config is not None else None,
    )
    return SUCCESS, config, logger


def resolve_run_config(
    args: argparse.Namespace,
    config: VistraConfig,
) -> tuple[DataConfig, TrainConfig]:
    """
    Merge preset, config file and flags into the data and train sections.

    Raises:
        ConfigValidationError: Unknown preset or an invalid override.
    """
    if config.train is not None:
        train = _with_overrides(config.train, {"net": args.net})
    else:
        train = preset_train_config(args.net or _DEFAULT_NET)

    train = _with_overrides(
        train,
        {"cache_directory": args.cache, "batch_size": args.batch_size},
    )

    data = config.data if config.data is not None else DataConfig()
    data = _with_overrides(
        data,
        {"folder": args.folder, "parallelism": args.parallel, "buffer": args.buffer},
    )
    return data, train


def handle_train(args: argparse.Namespace) -> int:
    """Train a network on a local image folder."""
    exit_code, config, logger = _load_and_bootstrap(args, "train")
    if exit_code != SUCCESS or config is None:
        return exit_code

    try:
        data, train = resolve_run_config(args, config)
    except ConfigError as err:
        logger.error("Configuration error", extra={"command": "train", "error": str(err)})
        return CONFIG_ERROR

    logger.info(
        "Starting training",
        extra={
            "command": "train",
            "dry_run": args.dry_run,
            "net": train.net,
            "folder": data.folder,
            "batch_size": train.batch_size,
            "parallelism": data.parallelism,
            "buffer": data.buffer,
        },
    )

    if args.dry_run:
        logger.info(
            "Dry run, would start training",
            extra={
                "data": data.model_dump(),
                "train": train.model_dump(),
            },
        )
        return SUCCESS

    from vistra.training.engine.runner import run_training

    try:
        result = run_training(
            data,
            train,
            seed=config.global_config.seed,
            resume_from=Path(args.resume) if args.resume is not None else None,
        )
    except (EmptyCorpusError, FileNotFoundError) as err:
        logger.error("Input not usable", extra={"error": str(err)})
        return USER_ERROR
    except Exception as err:
        logger.error("Training failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR

    logger.info(
        "Training complete",
        extra={
            "iteration": result.iteration,
            "epoch": result.epoch,
            "final_loss": result.final_loss,
            "checkpoints": [str(path) for path in result.checkpoints],
            "checkpoint_failures": len(result.checkpoint_failures),
        },
    )
    return SUCCESS


def handle_info(args: argparse.Namespace) -> int:
    """Display environment and configuration information."""
    logger = get_logger("vistra.cli.info", log_level=args.log_level)

    from vistra import __version__
    from vistra.config.presets import list_presets
    from vistra.model.registry import list_models
    from vistra.runtime.environment import get_system_info

    system_info = get_system_info()

    logger.info(
        "System information",
        extra={
            "vistra_version": __version__,
            "python_version": system_info.python_version,
            "torch_version": system_info.torch_version,
            "cuda_available": system_info.cuda_available,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "hostname": system_info.hostname,
            "cpu_count": system_info.cpu_count,
            "networks": list_models(),
            "presets": list_presets(),
            "config": args.config,
        },
    )
    return SUCCESS
