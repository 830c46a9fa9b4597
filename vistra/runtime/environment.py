# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Environment validation for vistra.

Checks that the machine meets the minimum requirements before any worker
thread is started, and collects the facts worth logging at startup.
"""

import os
import platform
import sys
from typing import NamedTuple

import torch

MINIMUM_PYTHON_MAJOR = 3
MINIMUM_PYTHON_MINOR = 10


class SystemInfo(NamedTuple):
    """Snapshot of the current system environment."""

    python_version: str
    platform: str
    architecture: str
    hostname: str
    cpu_count: int
    torch_version: str
    cuda_available: bool


def get_python_version() -> tuple[int, int, int]:
    """Return the current Python version as a (major, minor, micro) tuple."""
    return sys.version_info[:3]


def check_minimum_python() -> None:
    """
    Verify we're running a supported Python.

    Raises:
        RuntimeError: If the interpreter is too old.
    """
    major, minor, _ = get_python_version()
    if major < MINIMUM_PYTHON_MAJOR or (
        major == MINIMUM_PYTHON_MAJOR and minor < MINIMUM_PYTHON_MINOR
    ):
        raise RuntimeError(
            f"vistra requires Python >= {MINIMUM_PYTHON_MAJOR}.{MINIMUM_PYTHON_MINOR}, "
            f"but you're running {major}.{minor}. Please upgrade."
        )


def get_system_info() -> SystemInfo:
    """Collect basic system information for logging and diagnostics."""
    return SystemInfo(
        python_version=platform.python_version(),
        platform=platform.system(),
        architecture=platform.machine(),
        hostname=platform.node(),
        cpu_count=os.cpu_count() or 1,
        torch_version=torch.__version__,
        cuda_available=torch.cuda.is_available(),
    )
