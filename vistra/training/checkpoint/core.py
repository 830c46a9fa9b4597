# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Atomic checkpoint save/load for vistra.

A checkpoint is a directory named after the iteration it was taken at:

    <cache_dir>/iter_00010000/
        model.pt        model.state_dict()
        state.pt        TrainingState snapshot (counters, lr, optim buffers)
        rng_state.pt    Python and torch RNG states
        metadata.json   human-readable summary

Every iteration gets its own directory, so history is kept and a run can be
resumed from any of them. Saves are atomic: everything is written into a
temp directory next to the target and then renamed, so a crash never leaves a
half-written checkpoint behind. Any I/O or serialization failure surfaces as
CheckpointWriteError.
"""

import json
import logging
import pickle
import random
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

import torch
import torch.nn as nn

from vistra.logging.logger import get_logger
from vistra.training.exceptions import CheckpointWriteError

logger: logging.Logger = get_logger(__name__)

CHECKPOINT_PREFIX = "iter_"


def checkpoint_name(iteration: int) -> str:
    """Directory name for the checkpoint taken at `iteration`."""
    return f"{CHECKPOINT_PREFIX}{iteration:08d}"


def save_checkpoint(
    model: nn.Module,
    state: dict[str, Any],
    cache_dir: Path,
    iteration: int,
) -> Path:
    """
    Save model parameters and training state atomically.

    Args:
        model: The model whose parameters to persist.
        state: Serializable training state (see TrainingState.to_dict).
        cache_dir: Directory that holds all checkpoints of this run.
        iteration: Iteration number encoded in the checkpoint name.

    Returns:
        Path to the checkpoint directory.

    Raises:
        CheckpointWriteError: If anything goes wrong while writing.
    """
    checkpoint_dir = cache_dir / checkpoint_name(iteration)
    tmp_dir: Optional[Path] = None
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_dir = Path(tempfile.mkdtemp(dir=cache_dir, prefix=".ckpt_tmp_"))

        torch.save(model.state_dict(), tmp_dir / "model.pt")
        torch.save(state, tmp_dir / "state.pt")
        torch.save(
            {"python": random.getstate(), "torch_cpu": torch.random.get_rng_state()},
            tmp_dir / "rng_state.pt",
        )

        summary = {
            key: value
            for key, value in state.items()
            if isinstance(value, (int, float, str, bool)) or value is None
        }
        summary["iteration"] = iteration
        (tmp_dir / "metadata.json").write_text(
            json.dumps(summary, indent=2, default=str),
            encoding="utf-8",
        )

        if checkpoint_dir.exists():
            shutil.rmtree(checkpoint_dir)
        tmp_dir.rename(checkpoint_dir)
    except (OSError, RuntimeError, TypeError, ValueError, AttributeError, pickle.PickleError) as err:
        if tmp_dir is not None and tmp_dir.exists():
            shutil.rmtree(tmp_dir, ignore_errors=True)
        raise CheckpointWriteError(
            f"Failed to write checkpoint to {checkpoint_dir}: {err}", iteration=iteration
        ) from err

    logger.info(
        "Checkpoint saved",
        extra={"iteration": iteration, "path": str(checkpoint_dir)},
    )
    return checkpoint_dir


def load_checkpoint(
    checkpoint_dir: Path,
    model: nn.Module,
    device: Optional[torch.device] = None,
    restore_rng: bool = True,
) -> dict[str, Any]:
    """
    Load model weights from a checkpoint and return the saved training state.

    Args:
        checkpoint_dir: Path to an iter_NNNNNNNN directory.
        model: Model to load the weights into.
        device: Where to map tensors (CPU by default).
        restore_rng: Also restore the Python and torch RNG states.

    Returns:
        The training-state dict that was saved with the checkpoint.

    Raises:
        FileNotFoundError: If the directory or model.pt/state.pt is missing.
    """
    if not checkpoint_dir.is_dir():
        raise FileNotFoundError(f"Checkpoint directory not found: {checkpoint_dir}")

    map_location = device if device is not None else "cpu"

    model_path = checkpoint_dir / "model.pt"
    state_path = checkpoint_dir / "state.pt"
    for path in (model_path, state_path):
        if not path.is_file():
            raise FileNotFoundError(f"{path.name} not found in {checkpoint_dir}")

    model.load_state_dict(torch.load(model_path, map_location=map_location, weights_only=True))
    state = torch.load(state_path, map_location=map_location, weights_only=False)

    rng_path = checkpoint_dir / "rng_state.pt"
    if restore_rng and rng_path.is_file():
        rng_state = torch.load(rng_path, map_location="cpu", weights_only=False)
        random.setstate(rng_state["python"])
        torch.random.set_rng_state(rng_state["torch_cpu"])

    logger.info(
        "Checkpoint loaded",
        extra={"iteration": state.get("iteration"), "path": str(checkpoint_dir)},
    )
    return state


def find_latest_checkpoint(cache_dir: Path) -> Optional[Path]:
    """
    Return the checkpoint directory with the highest iteration, or None.

    Temp directories left by interrupted saves are ignored.
    """
    if not cache_dir.is_dir():
        return None

    candidates = []
    for entry in cache_dir.iterdir():
        if not entry.is_dir() or not entry.name.startswith(CHECKPOINT_PREFIX):
            continue
        suffix = entry.name[len(CHECKPOINT_PREFIX):]
        if suffix.isdigit():
            candidates.append((int(suffix), entry))

    if not candidates:
        return None
    return max(candidates)[1]
