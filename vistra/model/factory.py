# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model factory for vistra.

`build_model` is the canonical entry point for network construction. The
registry handles dispatch on the config string, no if/else chains.
"""

import logging

import torch.nn as nn

from vistra.model.registry import get_model

logger = logging.getLogger(__name__)


def count_parameters(model: nn.Module) -> int:
    """Number of trainable scalars in `model`."""
    return sum(p.numel() for p in model.parameters() if p.requires_grad)


def build_model(net: str, num_classes: int = 1000) -> nn.Module:
    """
    Build a registered network.

    Args:
        net: Registered network name, e.g. "alexnet" or "googlenetv1".
        num_classes: Size of the classifier output.

    Returns:
        Initialized nn.Module in train mode.

    Raises:
        KeyError: Unknown network name.
        ValueError: num_classes < 2.
    """
    if num_classes < 2:
        raise ValueError(f"num_classes must be >= 2, got {num_classes}")

    builder = get_model(net)
    logger.info("building_model", extra={"net": net, "num_classes": num_classes})
    model = builder(num_classes)
    logger.info("model_built", extra={"net": net, "total_parameters": count_parameters(model)})
    return model
