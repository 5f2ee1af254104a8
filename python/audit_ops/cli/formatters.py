"""
Output formatters for audit-ops commands.

Design Pattern: Strategy Pattern - interchangeable text and JSON renderers.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from audit_ops.models import SnapshotArtifact, SweepResult, SweepSummary


@runtime_checkable
class DictConvertible(Protocol):
    """Protocol for objects that can be rendered as JSON."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        ...


@dataclass
class FormatOptions:
    """
    Options for formatting output.

    Attributes:
        max_width: Maximum output width.
        truncate: Maximum cell length (0 = no truncation).
        time_format: Format string for timestamps.
    """

    max_width: int = 120
    truncate: int = 80
    time_format: str = "%Y-%m-%d %H:%M:%S"


class Formatter(ABC):
    """Abstract base class for output formatters."""

    def __init__(self, options: FormatOptions | None = None) -> None:
        self.options = options or FormatOptions()

    @abstractmethod
    def format(self, data: Any) -> str:
        """Format data for output."""
        ...

    def _truncate(self, text: str, max_length: int | None = None) -> str:
        max_len = max_length or self.options.truncate
        if max_len <= 0 or len(text) <= max_len:
            return text
        return text[: max_len - 3] + "..."


class JSONFormatter(Formatter):
    """JSON output for piping to other tools."""

    def __init__(self, options: FormatOptions | None = None, pretty: bool = True) -> None:
        super().__init__(options)
        self.pretty = pretty

    def format(self, data: Any) -> str:
        if isinstance(data, DictConvertible):
            data = data.to_dict()
        elif isinstance(data, list):
            data = [item.to_dict() if isinstance(item, DictConvertible) else item for item in data]

        return json.dumps(
            data,
            indent=2 if self.pretty else None,
            default=str,
            ensure_ascii=False,
        )


@dataclass
class TableColumn:
    """A column: row key, header text and alignment (``left`` or ``right``)."""

    key: str
    header: str
    align: str = "left"


class TableFormatter(Formatter):
    """
    Plain-text table sized to its content.

    Without explicit columns the keys of the first row are used.
    """

    def __init__(self, options: FormatOptions | None = None, columns: list[TableColumn] | None = None) -> None:
        super().__init__(options)
        self.columns = columns or []

    def format(self, data: list[dict[str, Any]]) -> str:
        columns = self.columns or [TableColumn(key=k, header=k) for k in (data[0] if data else {})]
        widths = {col.key: self._width(col, data) for col in columns}

        def render(cells: list[str]) -> str:
            padded = [
                cell.rjust(widths[col.key]) if col.align == "right" else cell.ljust(widths[col.key])
                for col, cell in zip(columns, cells)
            ]
            return "  ".join(padded)

        lines = [render([col.header for col in columns]), "  ".join("-" * widths[col.key] for col in columns)]
        for row in data:
            cells = [self._truncate(str(row.get(col.key, "-")), widths[col.key]) for col in columns]
            lines.append(render(cells).rstrip())
        return "\n".join(lines)

    def _width(self, column: TableColumn, rows: list[dict[str, Any]]) -> int:
        width = max([len(column.header), *(len(str(row.get(column.key, ""))) for row in rows)])
        if self.options.truncate > 0:
            width = min(width, self.options.truncate)
        return width


class SweepFormatter(Formatter):
    """Human-readable retention sweep report."""

    def format_result(self, result: SweepResult, dry_run: bool) -> str:
        """Render one rule outcome, including zero counts."""
        lines = [f"--- {result.rule.label} ---"]
        if result.error is not None:
            lines.append(f"    ERROR: {self._truncate(result.error, self.options.max_width)}")
        elif result.skipped:
            lines.append(f"    {result.rule.target} not found - skipping.")
        else:
            lines.append(f"    Records to purge: {result.matched}")
            if not dry_run:
                lines.append(f"    Purged: {result.deleted}")
        return "\n".join(lines)

    def format(self, data: SweepSummary) -> str:
        mode = "DRY RUN - no changes made" if data.dry_run else "APPLIED"
        rows = [
            {
                "rule": r.rule.name,
                "matched": r.matched,
                "deleted": r.deleted,
                "status": "error" if r.error else "skipped" if r.skipped else "ok",
            }
            for r in data.results
        ]
        table = TableFormatter(
            self.options,
            columns=[
                TableColumn("rule", "Rule"),
                TableColumn("matched", "Matched", align="right"),
                TableColumn("deleted", "Deleted", align="right"),
                TableColumn("status", "Status"),
            ],
        ).format(rows)

        footer = [
            "",
            f"  Mode: {mode}",
            f"  Total matched: {data.total_matched}",
            f"  Total deleted: {data.total_deleted}",
        ]
        if data.failed:
            footer.append(f"  Rules with errors: {', '.join(r.rule.name for r in data.failed)}")
        if data.finished_at is not None:
            footer.append(f"  Finished: {data.finished_at.isoformat(timespec='seconds')}")
        return "\n".join([table, *footer])


class ArtifactFormatter(Formatter):
    """Listing of snapshot artifacts in the style of ``ls -lh``."""

    def format(self, data: list[SnapshotArtifact]) -> str:
        if not data:
            return "    No backups found."
        rows = [
            {
                "size": artifact.human_size,
                "created": artifact.created_at.strftime(self.options.time_format),
                "format": artifact.format.value,
                "path": str(artifact.path),
            }
            for artifact in data
        ]
        return TableFormatter(
            FormatOptions(max_width=self.options.max_width, truncate=0, time_format=self.options.time_format),
            columns=[
                TableColumn("size", "Size", align="right"),
                TableColumn("created", "Created"),
                TableColumn("format", "Format"),
                TableColumn("path", "Path"),
            ],
        ).format(rows)
