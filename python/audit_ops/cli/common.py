"""
Shared plumbing for the audit-ops command-line entry points.
"""

from __future__ import annotations

import argparse
from typing import TYPE_CHECKING

from audit_ops.cli.console import Console, ConsoleConfig, OutputFormat
from audit_ops.config import Config, set_config
from audit_ops.logging import setup_logging

if TYPE_CHECKING:
    from collections.abc import Sequence

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_FATAL = 2


def common_arguments() -> argparse.ArgumentParser:
    """Parent parser with the options every command accepts."""
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to a YAML configuration file (default: $AUDIT_OPS_CONFIG or ./audit-ops.yaml)",
    )
    parser.add_argument(
        "--format",
        choices=[f.value for f in OutputFormat],
        default=OutputFormat.TEXT.value,
        help="Output format (default: text)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def make_console(args: argparse.Namespace) -> Console:
    return Console(ConsoleConfig(format=OutputFormat(args.format), verbose=args.verbose))


def bootstrap(args: argparse.Namespace) -> Config:
    """
    Load configuration and configure logging for one invocation.

    Raises:
        ConfigurationError: If the configuration cannot be loaded.
    """
    config = Config.load(args.config)
    set_config(config)
    setup_logging(level="DEBUG" if args.verbose else None)
    return config


def parse(parser: argparse.ArgumentParser, argv: Sequence[str] | None) -> argparse.Namespace:
    return parser.parse_args(list(argv) if argv is not None else None)
