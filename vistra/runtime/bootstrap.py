# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap for vistra.

The one-time setup that happens before any real work begins:
  1. Validate the environment (Python version)
  2. Set deterministic seeds
  3. Re-level the loggers and attach the optional log file

After bootstrap completes, the process is in a known, deterministic state.
The training command goes through this before building any source or worker.
"""

import os
import random
from pathlib import Path

import numpy as np
import torch

from vistra.config.schema import GlobalConfig
from vistra.logging.logger import get_logger, set_level
from vistra.runtime.environment import check_minimum_python, get_system_info


def set_deterministic_seed(seed: int) -> None:
    """
    Lock down the process-wide sources of randomness to the given seed.

    Sources and worker threads draw from their own seeded generators. This
    covers everything else: Python's random module, numpy, PYTHONHASHSEED and
    torch (CPU and CUDA, with deterministic cuDNN).

    Args:
        seed: Integer seed value. Must be >= 0.
    """
    random.seed(seed)
    np.random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)

    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
        torch.backends.cudnn.deterministic = True  # type: ignore[attr-defined]
        torch.backends.cudnn.benchmark = False  # type: ignore[attr-defined]


def bootstrap(config: GlobalConfig) -> None:
    """
    Run the full bootstrap sequence for vistra.

    Args:
        config: The validated global configuration.
    """
    check_minimum_python()
    set_deterministic_seed(config.seed)

    log_file = None
    if config.log_file is not None:
        log_file = Path(config.log_file)

    set_level(config.log_level)
    logger = get_logger("vistra.runtime", log_level=config.log_level, log_file=log_file)

    system_info = get_system_info()
    logger.info(
        "vistra bootstrap complete",
        extra={
            "project": config.project_name,
            "seed": config.seed,
            "python_version": system_info.python_version,
            "torch_version": system_info.torch_version,
            "platform": system_info.platform,
            "cpu_count": system_info.cpu_count,
        },
    )
