"""Main CLI entry point for composegif."""

from __future__ import annotations

import argparse
import logging
import sys

from composegif import __version__

from .compose_cli import build_compose_parser
from .inspect_cli import build_inspect_parser


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="composegif",
        description="Composite independently-timed animation layers into one GIF",
    )
    parser.add_argument("--version", action="version", version=f"composegif {__version__}")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Increase log output (-v for info, -vv for debug)",
    )
    subparsers = parser.add_subparsers(dest="command")
    build_compose_parser(subparsers)
    build_inspect_parser(subparsers)
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    if args.command is None:
        parser.print_help()
        return 0
    return args.func(args)


def cli_entry() -> None:
    sys.exit(main())
