# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Path utilities for vistra.

Split directories are given relative to the corpus folder, and must stay
inside it. Directory creation is always explicit.
"""

from pathlib import Path


def ensure_directory(path: Path) -> Path:
    """
    Create a directory (and parents) if it doesn't exist. Returns the path for chaining.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_split_directory(folder: Path, split: str) -> Path:
    """
    Resolve a split directory (e.g. "train") under the corpus folder.

    Both paths are resolved before comparing, so `../elsewhere` style splits
    are caught.

    Returns:
        The resolved absolute split path.

    Raises:
        ValueError: If the split resolves outside `folder`.
    """
    resolved_root = folder.resolve()
    resolved_split = (folder / split).resolve()
    if resolved_split != resolved_root and resolved_root not in resolved_split.parents:
        raise ValueError(
            f"Split '{split}' resolves to '{resolved_split}' which is outside "
            f"the data folder '{resolved_root}'."
        )
    return resolved_split
