"""
``audit-retention``: enforce the data retention policy.

Intended for cron, e.g. weekly:
    0 2 * * 0 audit-retention >> /var/log/retention.log 2>&1
"""

from __future__ import annotations

import argparse
from typing import TYPE_CHECKING

from audit_ops.cli.common import (
    EXIT_FATAL,
    bootstrap,
    common_arguments,
    make_console,
    parse,
)
from audit_ops.exceptions import AuditOpsError
from audit_ops.locking import LockManager
from audit_ops.logging import get_logger
from audit_ops.retention import RetentionSweeper, default_rules, select_rules
from audit_ops.stores import create_stores

if TYPE_CHECKING:
    from collections.abc import Sequence

    from audit_ops.cli.console import Console
    from audit_ops.models import SweepResult

logger = get_logger(__name__)


class ConsoleSweepObserver:
    """Prints each rule's counts as soon as the rule finishes."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def on_rule_completed(self, result: SweepResult, dry_run: bool) -> None:
        self._console.print_rule_result(result, dry_run)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="audit-retention",
        description="Enforce data retention across PostgreSQL, MongoDB and Neo4j",
        parents=[common_arguments()],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Retention policies:
  - Query logs & retrieval events: 365 days
  - Agent memory checkpoints: 90 days
  - Ingestion job records (completed): 180 days
  - MongoDB chunks for deleted documents: immediate
  - Neo4j orphaned chunk nodes: immediate

Exit codes: 0 all rules succeeded, 1 some rules failed, 2 fatal error
        """,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be deleted without deleting anything",
    )
    parser.add_argument(
        "--only",
        nargs="+",
        metavar="RULE",
        help="Run only the named rules",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``audit-retention``."""
    args = parse(build_parser(), argv)
    console = make_console(args)

    try:
        config = bootstrap(args)
        rules = select_rules(default_rules(config.retention), args.only)
    except (AuditOpsError, OSError, ValueError) as e:
        console.error(str(e))
        return EXIT_FATAL

    console.header("Data Retention Policy Enforcement")
    if args.dry_run:
        console.info("DRY RUN MODE - no data will be deleted")

    sweeper = RetentionSweeper(
        create_stores(config),
        locks=LockManager(config.locking),
        observers=[ConsoleSweepObserver(console)],
    )
    try:
        summary = sweeper.run(rules, dry_run=args.dry_run)
    except OSError as e:
        logger.error("sweep_aborted", error=str(e))
        console.error(str(e))
        return EXIT_FATAL
    console.print_sweep(summary)

    if summary.failed:
        console.warning(f"{len(summary.failed)} rule(s) failed; see log for details")
    return summary.exit_code
