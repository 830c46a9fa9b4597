# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for path helpers.
"""

from pathlib import Path

import pytest

from vistra.utils.paths import ensure_directory, resolve_split_directory


class TestEnsureDirectory:
    def test_creates_nested(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b"
        assert ensure_directory(target) == target
        assert target.is_dir()

    def test_existing_is_fine(self, tmp_path: Path) -> None:
        ensure_directory(tmp_path)
        assert tmp_path.is_dir()


class TestResolveSplit:
    def test_inside_folder(self, tmp_path: Path) -> None:
        assert resolve_split_directory(tmp_path, "train") == (tmp_path / "train").resolve()

    def test_escape_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="outside"):
            resolve_split_directory(tmp_path / "corpus", "../elsewhere")
