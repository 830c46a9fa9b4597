# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Network registry for vistra.

A network is selected by config string alone (`train.net`). The registry maps
that string to a constructor taking `num_classes`. Built-in networks register
themselves when their module is imported. `_register_builtins()` runs once at
import time and is idempotent.
"""

import logging
from typing import Callable

import torch.nn as nn

logger = logging.getLogger(__name__)

ModelBuilder = Callable[[int], nn.Module]

_MODEL_REGISTRY: dict[str, ModelBuilder] = {}


def register_model(name: str, builder: ModelBuilder) -> None:
    """
    Register a network constructor under a unique, case-insensitive name.

    Args:
        name: Config-level identifier (e.g. ``"alexnet"``).
        builder: Callable taking ``num_classes`` and returning an ``nn.Module``.

    Raises:
        ValueError: If ``name`` is already registered.
    """
    key = name.lower()
    if key in _MODEL_REGISTRY:
        raise ValueError(f"Network '{name}' is already registered")
    _MODEL_REGISTRY[key] = builder
    logger.debug("registered_model", extra={"name": key})


def get_model(name: str) -> ModelBuilder:
    """
    Retrieve a registered network constructor by name.

    Raises:
        KeyError: If ``name`` is not registered.
    """
    key = name.lower()
    if key not in _MODEL_REGISTRY:
        raise KeyError(f"Unknown network '{name}'. Available: {list_models()}")
    return _MODEL_REGISTRY[key]


def list_models() -> list[str]:
    """Return sorted list of all registered network names."""
    return sorted(_MODEL_REGISTRY)


_BUILTINS_REGISTERED: bool = False


def _register_builtins() -> None:
    global _BUILTINS_REGISTERED
    if _BUILTINS_REGISTERED:
        return

    from vistra.model.alexnet import AlexNet
    from vistra.model.googlenet import GoogLeNetV1

    register_model("alexnet", AlexNet)
    register_model("googlenetv1", GoogLeNetV1)

    _BUILTINS_REGISTERED = True


_register_builtins()
