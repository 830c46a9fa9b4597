# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for vistra.

Every operation is a subcommand of `vistra`. The global options (--config,
--log-level, --dry-run, --seed) are inherited by every subcommand through
argparse's parent parser mechanism.

Usage:
    vistra train --net alexnet --folder /data/imagenet --cache ./cache
    vistra train --config configs/train.yaml --parallel 8 --buffer 4
    vistra info
"""

import argparse
import sys
from typing import Optional, Sequence

from vistra.cli.commands import handle_info, handle_train
from vistra.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """
    Build the parent parser with global options.

    A separate parent parser (add_help=False) keeps the help text of the
    parent and the subcommand parsers from colliding.
    """
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level.",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Resolve config and report what would run, without training.",
    )
    parent.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override the random seed (takes precedence over config).",
    )
    return parent


def _add_train_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--net",
        type=str,
        default=None,
        help="Network preset (alexnet, googlenetv1). Used when the config has no train section.",
    )
    parser.add_argument(
        "--folder",
        "-f",
        type=str,
        default=None,
        help="Corpus folder holding the train and val splits.",
    )
    parser.add_argument(
        "--cache",
        type=str,
        default=None,
        help="Directory to write checkpoints into.",
    )
    parser.add_argument(
        "--parallel",
        type=int,
        default=None,
        help="Number of preprocessing worker threads.",
    )
    parser.add_argument(
        "--buffer",
        type=int,
        default=None,
        help="Maximum number of finished batches waiting for the optimizer.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        dest="batch_size",
        help="Override the batch size.",
    )
    parser.add_argument(
        "--resume",
        type=str,
        default=None,
        help="Checkpoint directory (or cache directory) to resume from.",
    )


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    train_parser = subparsers.add_parser(
        "train", parents=[parent], help="Train an image classifier on a local folder."
    )
    _add_train_options(train_parser)
    train_parser.set_defaults(func=handle_train)

    info_parser = subparsers.add_parser(
        "info", parents=[parent], help="Display environment and config info."
    )
    info_parser.set_defaults(func=handle_info)


def build_parser() -> argparse.ArgumentParser:
    parent = _build_global_parser()
    root_parser = argparse.ArgumentParser(
        prog="vistra",
        description="vistra: streaming image preprocessing and local training.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)
    return root_parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Main CLI entrypoint. This is what pyproject.toml's [project.scripts] points to.

    If no subcommand is given, help is shown and the exit code is USER_ERROR.
    """
    root_parser = build_parser()
    args = root_parser.parse_args(argv)

    if not hasattr(args, "func") or args.func is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
