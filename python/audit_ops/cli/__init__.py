"""
Command-line interface for audit-ops.

Entry points:
- audit-retention: fail-soft retention sweep (``--dry-run`` to preview)
- audit-backup: backup, restore and list snapshots of one store

Usage:
    from audit_ops.cli import Console, OutputFormat
    console = Console(ConsoleConfig(format=OutputFormat.JSON))
    console.print_sweep(summary)
"""

from audit_ops.cli.common import EXIT_FATAL, EXIT_OK, EXIT_PARTIAL_FAILURE
from audit_ops.cli.console import CapturedOutput, Console, ConsoleConfig, OutputFormat
from audit_ops.cli.formatters import (
    ArtifactFormatter,
    FormatOptions,
    Formatter,
    JSONFormatter,
    SweepFormatter,
    TableColumn,
    TableFormatter,
)

__all__ = [
    "EXIT_FATAL",
    "EXIT_OK",
    "EXIT_PARTIAL_FAILURE",
    "ArtifactFormatter",
    "CapturedOutput",
    "Console",
    "ConsoleConfig",
    "FormatOptions",
    "Formatter",
    "JSONFormatter",
    "OutputFormat",
    "SweepFormatter",
    "TableColumn",
    "TableFormatter",
]
