"""
Console output manager for the audit-ops commands.

Command results go to stdout; prompts and status messages that must not
pollute JSON output go to stderr.

Design Pattern: Facade Pattern - simple interface to the formatters.
"""

from __future__ import annotations

import io
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TextIO

from audit_ops.cli.formatters import (
    ArtifactFormatter,
    FormatOptions,
    JSONFormatter,
    SweepFormatter,
)

if TYPE_CHECKING:
    from audit_ops.models import SnapshotArtifact, SweepResult, SweepSummary


class OutputFormat(str, Enum):
    """Output format options."""

    TEXT = "text"
    JSON = "json"


@dataclass
class ConsoleConfig:
    """
    Configuration for console output.

    Attributes:
        format: Output format for command results.
        max_width: Maximum output width.
        verbose: Enable verbose output.
        quiet: Suppress non-essential output.
        output: Output stream.
        error_output: Error output stream.
    """

    format: OutputFormat = OutputFormat.TEXT
    max_width: int = 120
    verbose: bool = False
    quiet: bool = False
    output: TextIO = field(default_factory=lambda: sys.stdout)
    error_output: TextIO = field(default_factory=lambda: sys.stderr)


class Console:
    """
    Main console output manager.

    Example:
        console = Console()
        console.header("Data Retention Policy Enforcement")
        console.print_sweep(summary)
    """

    def __init__(self, config: ConsoleConfig | None = None) -> None:
        self.config = config or ConsoleConfig()
        options = FormatOptions(max_width=self.config.max_width)
        self._json_formatter = JSONFormatter(options)
        self._sweep_formatter = SweepFormatter(options)
        self._artifact_formatter = ArtifactFormatter(options)

    @property
    def is_json(self) -> bool:
        return self.config.format == OutputFormat.JSON

    # =========================================================================
    # Basic Output Methods
    # =========================================================================

    def print(self, message: str, *, end: str = "\n") -> None:
        self.config.output.write(message + end)
        self.config.output.flush()

    def print_error(self, message: str) -> None:
        self.config.error_output.write(message + "\n")
        self.config.error_output.flush()

    def _status(self, message: str) -> None:
        # Status lines move to stderr in JSON mode so stdout stays parseable.
        if self.is_json:
            self.print_error(message)
        else:
            self.print(message)

    def info(self, message: str) -> None:
        if self.config.quiet:
            return
        self._status(f"==> {message}")

    def success(self, message: str) -> None:
        self._status(f"[OK] {message}")

    def warning(self, message: str) -> None:
        self._status(f"[WARN] {message}")

    def error(self, message: str) -> None:
        self.print_error(f"[ERROR] {message}")

    def debug(self, message: str) -> None:
        if not self.config.verbose:
            return
        self._status(f"[DEBUG] {message}")

    def header(self, message: str, *, char: str = "=") -> None:
        if self.config.quiet:
            return
        rule = char * min(max(len(message) + 4, 44), self.config.max_width)
        self._status(rule)
        self._status(f"  {message}")
        self._status(rule)

    def blank(self) -> None:
        if not self.config.quiet:
            self._status("")

    # =========================================================================
    # Structured Output Methods
    # =========================================================================

    def print_json(self, data: Any) -> None:
        self.print(self._json_formatter.format(data))

    def print_rule_result(self, result: SweepResult, dry_run: bool) -> None:
        """Print one rule outcome as it completes (text mode only)."""
        if self.is_json or self.config.quiet:
            return
        self.blank()
        self.print(self._sweep_formatter.format_result(result, dry_run))

    def print_sweep(self, summary: SweepSummary) -> None:
        if self.is_json:
            self.print_json(summary)
            return
        self.blank()
        self.print(self._sweep_formatter.format(summary))

    def print_artifacts(self, artifacts: list[SnapshotArtifact]) -> None:
        if self.is_json:
            self.print_json(artifacts)
            return
        self.print(self._artifact_formatter.format(artifacts))

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def prompt(self, message: str) -> str:
        """Read one answer from stdin, writing the prompt to stderr."""
        self.config.error_output.write(message)
        self.config.error_output.flush()
        return input()

    def capture(self) -> CapturedOutput:
        """Capture console output for testing."""
        return CapturedOutput(self)


class CapturedOutput:
    """Context manager for capturing console output."""

    def __init__(self, console: Console) -> None:
        self._console = console
        self._output = io.StringIO()
        self._error = io.StringIO()
        self._original_output: TextIO | None = None
        self._original_error: TextIO | None = None

    def __enter__(self) -> CapturedOutput:
        self._original_output = self._console.config.output
        self._original_error = self._console.config.error_output
        self._console.config.output = self._output
        self._console.config.error_output = self._error
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._original_output:
            self._console.config.output = self._original_output
        if self._original_error:
            self._console.config.error_output = self._original_error

    @property
    def output(self) -> str:
        return self._output.getvalue()

    @property
    def error(self) -> str:
        return self._error.getvalue()
