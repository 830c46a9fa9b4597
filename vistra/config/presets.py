# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Built-in training recipes for the ImageNet-style networks.

These are the published single-node recipes for AlexNet and GoogLeNet v1:
crop size, batch size, SGD hyperparameters, schedule and the three control
triggers. `vistra train --net alexnet` starts from one of these when no
`train:` section is supplied.
"""

from typing import Any

from vistra.config.exceptions import ConfigValidationError
from vistra.config.schema import TrainConfig

NET_PRESETS: dict[str, dict[str, Any]] = {
    "alexnet": {
        "config_version": "1.0.0",
        "net": "alexnet",
        "num_classes": 1000,
        "image_size": 227,
        "batch_size": 256,
        "momentum": 0.9,
        "dampening": 0.0,
        "weight_decay": 0.0005,
        "learning_rate": 0.01,
        "schedule": {"kind": "step", "step_size": 100000, "gamma": 0.1},
        "test_trigger": {"kind": "several_iteration", "n": 1000},
        "cache_trigger": {"kind": "several_iteration", "n": 10000},
        "end_when": {"kind": "max_iteration", "n": 450000},
        "cache_directory": "./",
    },
    "googlenetv1": {
        "config_version": "1.0.0",
        "net": "googlenetv1",
        "num_classes": 1000,
        "image_size": 224,
        "batch_size": 32,
        "momentum": 0.9,
        "dampening": 0.0,
        "weight_decay": 0.0002,
        "learning_rate": 0.01,
        "schedule": {"kind": "poly", "power": 0.5, "max_iteration": 2400000},
        "test_trigger": {"kind": "several_iteration", "n": 4000},
        "cache_trigger": {"kind": "several_iteration", "n": 40000},
        "end_when": {"kind": "max_iteration", "n": 2400000},
        "cache_directory": "./",
    },
}


def list_presets() -> list[str]:
    """Return sorted names of the built-in recipes."""
    return sorted(NET_PRESETS)


def preset_train_config(net: str, **overrides: Any) -> TrainConfig:
    """
    Build a validated TrainConfig from a named recipe.

    Args:
        net: Preset name, case-insensitive.
        **overrides: Top-level TrainConfig fields to replace before validation.

    Raises:
        ConfigValidationError: Unknown preset or invalid overrides.
    """
    key = net.lower()
    if key not in NET_PRESETS:
        raise ConfigValidationError(
            f"Unknown net preset '{net}'. Available: {', '.join(list_presets())}"
        )
    raw = {**NET_PRESETS[key], **overrides}
    try:
        return TrainConfig.model_validate(raw)
    except ValueError as err:
        raise ConfigValidationError(f"Invalid overrides for preset '{net}':\n{err}") from err
