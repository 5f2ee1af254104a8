"""
``audit-backup``: back up, restore and list snapshots of one store.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import TYPE_CHECKING

from audit_ops.backup import BackupManager
from audit_ops.cli.common import (
    EXIT_FATAL,
    EXIT_OK,
    bootstrap,
    common_arguments,
    make_console,
    parse,
)
from audit_ops.exceptions import AuditOpsError
from audit_ops.locking import LockManager
from audit_ops.logging import get_logger
from audit_ops.models import RestoreOutcome, SnapshotFormat, StoreKind
from audit_ops.stores import create_store

if TYPE_CHECKING:
    from collections.abc import Sequence

    from audit_ops.cli.console import Console

logger = get_logger(__name__)

STORE_CHOICES = [kind.engine for kind in StoreKind]


def build_parser() -> argparse.ArgumentParser:
    common = common_arguments()
    parser = argparse.ArgumentParser(
        prog="audit-backup",
        description="Backup and restore the Audit RAG data stores",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a gzipped SQL dump in ./backups/postgres
  audit-backup postgres backup

  # List MongoDB backups in a custom directory
  audit-backup mongodb list /mnt/backups/mongodb

  # Restore Neo4j without the interactive prompt
  audit-backup neo4j restore ./backups/neo4j/neo4j_20240101_020000.dump.gz --yes
        """,
    )
    parser.add_argument("store", choices=STORE_CHOICES, help="Store to operate on")

    subparsers = parser.add_subparsers(dest="command", metavar="{backup,restore,list}")
    subparsers.required = True

    backup_parser = subparsers.add_parser("backup", parents=[common], help="Create a compressed snapshot")
    backup_parser.add_argument("path", nargs="?", metavar="output_dir", help="Output directory")

    restore_parser = subparsers.add_parser("restore", parents=[common], help="Restore from a snapshot")
    restore_parser.add_argument("path", metavar="backup_file", help="Snapshot file to restore")
    restore_parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip the confirmation prompt",
    )

    list_parser = subparsers.add_parser("list", parents=[common], help="List available snapshots")
    list_parser.add_argument("path", nargs="?", metavar="backup_dir", help="Backup directory")

    return parser


def _backup(manager: BackupManager, console: Console, args: argparse.Namespace) -> int:
    store = manager.store
    console.info(f"Backing up {store.name} database: {store.db_name}")
    if store.kind == StoreKind.GRAPH:
        console.info("NOTE: Neo4j will be briefly stopped for a consistent backup.")

    artifact = manager.backup(args.path)

    if console.is_json:
        console.print_json(artifact)
    else:
        console.success(f"Backup complete: {artifact.path} ({artifact.human_size})")
    if artifact.format == SnapshotFormat.FALLBACK:
        console.warning("Offline dump failed; snapshot is a live JSON export")
    return EXIT_OK


def _restore(manager: BackupManager, console: Console, args: argparse.Namespace) -> int:
    outcome = manager.restore(args.path, confirm=True if args.yes else None)

    if console.is_json:
        console.print_json({"outcome": outcome.value, "path": args.path})
    elif outcome == RestoreOutcome.CANCELLED:
        console.info("Restore cancelled.")
    else:
        console.success("Restore complete.")
    return EXIT_OK


def _list(manager: BackupManager, console: Console, args: argparse.Namespace) -> int:
    directory = args.path or str(manager.default_directory)
    artifacts = manager.list(directory)

    if console.is_json:
        console.print_json(artifacts)
        return EXIT_OK

    console.info(f"{manager.store.name} backups in {directory}:")
    if not Path(directory).is_dir():
        console.print("    Directory not found.")
    else:
        console.print_artifacts(artifacts)
    return EXIT_OK


COMMANDS = {
    "backup": _backup,
    "restore": _restore,
    "list": _list,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``audit-backup``."""
    args = parse(build_parser(), argv)
    console = make_console(args)

    try:
        config = bootstrap(args)
        kind = StoreKind.from_engine(args.store)
        manager = BackupManager(
            create_store(kind, config),
            config.backup,
            locks=LockManager(config.locking),
            prompt=console.prompt,
        )
        return COMMANDS[args.command](manager, console, args)
    except AuditOpsError as e:
        logger.error("command_failed", command=args.command, store=args.store, **e.to_dict())
        console.error(str(e))
        return EXIT_FATAL
    except OSError as e:
        logger.error("command_failed", command=args.command, store=args.store, error=str(e))
        console.error(str(e))
        return EXIT_FATAL
