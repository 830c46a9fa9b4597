# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI smoke tests.

CLI tests verify that commands execute, exit codes are correct and help text
exists. We use subprocess to run the actual CLI entrypoint the way a user
would, which catches broken imports and entrypoint registration that unit
tests miss.
"""

import subprocess
import sys
from pathlib import Path

import pytest

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _run_cli(*args: str, timeout: int = 30) -> subprocess.CompletedProcess[str]:
    """Run `vistra` with the given arguments and capture output."""
    return subprocess.run(
        [sys.executable, "-m", "vistra.cli.main", *args],
        capture_output=True,
        text=True,
        timeout=timeout,
        cwd=_PROJECT_ROOT,
    )


class TestHelpTexts:
    @pytest.mark.parametrize("subcommand", ["train", "info"])
    def test_subcommand_help_exits_zero(self, subcommand: str) -> None:
        result = _run_cli(subcommand, "--help")
        assert result.returncode == 0
        assert "usage" in result.stdout.lower()

    def test_train_help_lists_data_options(self) -> None:
        result = _run_cli("train", "--help")
        for option in ("--net", "--folder", "--cache", "--parallel", "--buffer", "--resume"):
            assert option in result.stdout

    def test_root_help_exits_with_user_error(self) -> None:
        """Running vistra with no args should show help and exit with USER_ERROR (1)."""
        result = _run_cli()
        assert result.returncode == 1


class TestSubcommandExecution:
    def test_info_runs_without_config(self) -> None:
        result = _run_cli("info")
        assert result.returncode == 0
        assert "System information" in result.stdout

    def test_train_dry_run_with_preset(self, tmp_path: Path) -> None:
        """A dry run resolves the recipe without touching the corpus."""
        result = _run_cli("train", "--net", "googlenetv1", "--folder", str(tmp_path), "--dry-run")
        assert result.returncode == 0
        assert "Dry run" in result.stdout

    def test_train_with_broken_config(self, broken_yaml_file: Path) -> None:
        result = _run_cli("train", "--config", str(broken_yaml_file), "--dry-run")
        assert result.returncode == 2

    def test_train_with_invalid_config(self, invalid_config_file: Path) -> None:
        result = _run_cli("train", "--config", str(invalid_config_file), "--dry-run")
        assert result.returncode == 2

    def test_invalid_override_is_config_error(self, tmp_path: Path) -> None:
        result = _run_cli("train", "--folder", str(tmp_path), "--parallel", "0", "--dry-run")
        assert result.returncode == 2

    def test_unknown_net_is_config_error(self) -> None:
        result = _run_cli("train", "--net", "resnet", "--dry-run")
        assert result.returncode == 2

    def test_missing_corpus_is_user_error(self, tmp_path: Path) -> None:
        result = _run_cli("train", "--folder", str(tmp_path / "missing"), "--cache", str(tmp_path))
        assert result.returncode == 1

    def test_train_runs_from_config(self, train_config_file: Path, tmp_path: Path) -> None:
        """A full (tiny) training run exits 0 and leaves a checkpoint behind."""
        result = _run_cli("train", "--config", str(train_config_file), timeout=300)
        assert result.returncode == 0, result.stdout + result.stderr
        assert (tmp_path / "cache" / "iter_00000002" / "model.pt").is_file()
