# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for vistra tests.

Fixtures here are available to every test file automatically. Image corpora
are generated on the fly with Pillow, small enough that a full pass through
the pipeline takes milliseconds.
"""

import textwrap
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

CLASSES = ("cat", "dog", "fox")


def write_image(path: Path, width: int, height: int, seed: int = 0) -> Path:
    """Write a random RGB PNG of the given size."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(pixels).save(path)
    return path


def make_split(root: Path, per_class: int, classes: tuple[str, ...] = CLASSES) -> Path:
    """Create `root/<class>/img_NN.png` for every class. Sizes vary per image."""
    for class_index, class_name in enumerate(classes):
        for i in range(per_class):
            write_image(
                root / class_name / f"img_{i:02d}.png",
                width=40 + 3 * i,
                height=36 + 2 * class_index,
                seed=100 * class_index + i,
            )
    return root


@pytest.fixture()
def image_writer():
    """Factory fixture: `image_writer(path, width, height, seed=0)`."""
    return write_image


@pytest.fixture()
def split_maker():
    """Factory fixture: `split_maker(root, per_class, classes=CLASSES)`."""
    return make_split


@pytest.fixture()
def image_folder(tmp_path: Path) -> Path:
    """
    A tiny ImageNet-style corpus:

        <tmp>/corpus/train/{cat,dog,fox}/img_00..03.png   (12 images)
        <tmp>/corpus/val/{cat,dog,fox}/img_00..01.png     (6 images)
    """
    corpus = tmp_path / "corpus"
    make_split(corpus / "train", per_class=4)
    make_split(corpus / "val", per_class=2)
    return corpus


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """The smallest config that passes schema validation."""
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "vistra-test"
          seed: 42
          log_level: "DEBUG"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def train_config_file(tmp_path: Path, image_folder: Path) -> Path:
    """A complete config that trains a real network on the tiny corpus."""
    config_content = textwrap.dedent(f"""\
        global:
          config_version: "1.0.0"
          project_name: "vistra-test"
          seed: 7
          log_level: "WARNING"
        data:
          folder: "{image_folder.as_posix()}"
          parallelism: 2
          buffer: 2
          short_edge: 72
        train:
          config_version: "1.0.0"
          net: "googlenetv1"
          num_classes: 3
          image_size: 64
          batch_size: 4
          learning_rate: 0.01
          schedule:
            kind: "constant"
          test_trigger:
            kind: "several_iteration"
            n: 2
          cache_trigger:
            kind: "several_iteration"
            n: 2
          end_when:
            kind: "max_iteration"
            n: 2
          cache_directory: "{(tmp_path / 'cache').as_posix()}"
    """)
    config_file = tmp_path / "train_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """A config file that's valid YAML but fails schema validation (missing required field)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "vistra-test"
          seed: 42
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file
