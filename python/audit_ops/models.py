"""
Data models for retention sweeps and snapshot artifacts.

All entities here are transient: rules are built from configuration,
results live for the duration of one run, and the filesystem listing
is the only catalog of snapshot artifacts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
SNAPSHOT_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
_SNAPSHOT_TIMESTAMP_PATTERN = re.compile(r"_(\d{8}_\d{6})(?:_cypher)?\.")


class StoreKind(str, Enum):
    """The three data stores managed by audit-ops."""

    RELATIONAL = "relational"
    DOCUMENT = "document"
    GRAPH = "graph"

    @property
    def engine(self) -> str:
        """Engine name used on the command line and for backup directories."""
        return _ENGINE_NAMES[self]

    @classmethod
    def from_engine(cls, engine: str) -> StoreKind:
        """Resolve a store kind from an engine name or a kind value."""
        lowered = engine.strip().lower()
        for kind, name in _ENGINE_NAMES.items():
            if lowered in (name, kind.value):
                return kind
        raise ValueError(f"Unknown store: {engine}")


_ENGINE_NAMES = {
    StoreKind.RELATIONAL: "postgres",
    StoreKind.DOCUMENT: "mongodb",
    StoreKind.GRAPH: "neo4j",
}


class DeletionScope(str, Enum):
    """How a retention rule selects records."""

    AGE = "age"
    ORPHAN = "orphan"


def _check_identifier(name: str, value: str) -> None:
    if not IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"{name} must be a plain identifier, got {value!r}")


@dataclass(frozen=True)
class OrphanPredicate:
    """
    Store-specific definition of "unreferenced".

    For the document store a record is orphaned when its ``foreign_key``
    is absent from the distinct ``reference_field`` values of
    ``reference_collection``. For the graph store a node is orphaned when
    it has no outgoing ``relationship_type`` edge.
    """

    foreign_key: str | None = None
    reference_collection: str | None = None
    reference_field: str | None = None
    relationship_type: str | None = None

    def __post_init__(self) -> None:
        for name in ("foreign_key", "reference_collection", "reference_field", "relationship_type"):
            value = getattr(self, name)
            if value is not None:
                _check_identifier(name, value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "foreign_key": self.foreign_key,
            "reference_collection": self.reference_collection,
            "reference_field": self.reference_field,
            "relationship_type": self.relationship_type,
        }


@dataclass(frozen=True)
class RetentionRule:
    """
    A single retention rule.

    Attributes:
        name: Stable rule identifier (used by ``--only``).
        store: Store the rule runs against.
        target: Table, collection or node label.
        scope: Age-based delete or orphan-detection delete.
        timestamp_field: Column/field holding the record creation time.
        max_age: Age threshold; records strictly older are eligible.
        predicate: Extra equality filters, e.g. ``{"status": "completed"}``.
        orphan: Orphan definition for orphan-scoped rules.
        description: Human-readable label for summaries.
    """

    name: str
    store: StoreKind
    target: str
    scope: DeletionScope = DeletionScope.AGE
    timestamp_field: str | None = None
    max_age: timedelta | None = None
    predicate: dict[str, Any] = field(default_factory=dict)
    orphan: OrphanPredicate | None = None
    description: str = ""

    def __post_init__(self) -> None:
        _check_identifier("target", self.target)
        for key in self.predicate:
            _check_identifier("predicate field", key)

        if self.scope == DeletionScope.AGE:
            if self.max_age is None or self.timestamp_field is None:
                raise ValueError(f"Age rule {self.name!r} needs max_age and timestamp_field")
            _check_identifier("timestamp_field", self.timestamp_field)
        elif self.orphan is None:
            raise ValueError(f"Orphan rule {self.name!r} needs an orphan predicate")

    def cutoff(self, reference_time: datetime) -> datetime | None:
        """Records created before the returned time are eligible."""
        if self.max_age is None:
            return None
        return reference_time - self.max_age

    @property
    def label(self) -> str:
        """Short label for summaries."""
        return self.description or f"{self.store.engine}:{self.target}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "name": self.name,
            "store": self.store.value,
            "target": self.target,
            "scope": self.scope.value,
            "timestamp_field": self.timestamp_field,
            "max_age_days": self.max_age.days if self.max_age else None,
            "predicate": self.predicate,
            "orphan": self.orphan.to_dict() if self.orphan else None,
            "description": self.description,
        }


@dataclass
class SweepResult:
    """Outcome of one retention rule within one sweep."""

    rule: RetentionRule
    matched: int = 0
    deleted: int = 0
    skipped: bool = False
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        """Check if the rule completed without error."""
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rule": self.rule.name,
            "description": self.rule.label,
            "store": self.rule.store.value,
            "matched": self.matched,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class SweepSummary:
    """Per-run summary of a retention sweep."""

    dry_run: bool
    results: list[SweepResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def total_matched(self) -> int:
        return sum(r.matched for r in self.results)

    @property
    def total_deleted(self) -> int:
        return sum(r.deleted for r in self.results)

    @property
    def failed(self) -> list[SweepResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def exit_code(self) -> int:
        """0 when every rule succeeded, 1 when any rule errored."""
        return 1 if self.failed else 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total_matched": self.total_matched,
            "total_deleted": self.total_deleted,
            "error_count": len(self.failed),
            "results": [r.to_dict() for r in self.results],
        }


class SnapshotFormat(str, Enum):
    """Which mechanism produced a snapshot."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass
class SnapshotArtifact:
    """A compressed, timestamped export of one store on the local filesystem."""

    store: StoreKind
    db_name: str
    path: Path
    created_at: datetime
    size_bytes: int = 0
    format: SnapshotFormat = SnapshotFormat.PRIMARY

    @classmethod
    def from_path(
        cls,
        path: Path,
        store: StoreKind,
        db_name: str,
        snapshot_format: SnapshotFormat = SnapshotFormat.PRIMARY,
    ) -> SnapshotArtifact:
        """Describe an existing artifact file."""
        stat = path.stat()
        created_at = parse_snapshot_timestamp(path.name)
        if created_at is None:
            created_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return cls(
            store=store,
            db_name=db_name,
            path=path,
            created_at=created_at,
            size_bytes=stat.st_size,
            format=snapshot_format,
        )

    @property
    def human_size(self) -> str:
        """Size in the style of ``du -h``."""
        if self.size_bytes < 1024:
            return f"{self.size_bytes}B"
        size = self.size_bytes / 1024
        for unit in ("K", "M"):
            if size < 1024:
                return f"{size:.1f}{unit}"
            size /= 1024
        return f"{size:.1f}G"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "store": self.store.value,
            "db_name": self.db_name,
            "path": str(self.path),
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
            "format": self.format.value,
        }


class RestoreOutcome(str, Enum):
    """Result of a restore invocation."""

    RESTORED = "restored"
    CANCELLED = "cancelled"


@dataclass
class RestoreRequest:
    """An operator's request to restore one artifact."""

    store: StoreKind
    artifact: SnapshotArtifact
    confirmed: bool = False


def snapshot_stem(db_name: str, timestamp: datetime) -> str:
    """Build the ``<db>_<YYYYMMDD_HHMMSS>`` artifact stem."""
    return f"{db_name}_{timestamp.strftime(SNAPSHOT_TIMESTAMP_FORMAT)}"


def parse_snapshot_timestamp(filename: str) -> datetime | None:
    """Extract the creation timestamp from an artifact file name."""
    match = _SNAPSHOT_TIMESTAMP_PATTERN.search(filename)
    if not match:
        return None
    try:
        parsed = datetime.strptime(match.group(1), SNAPSHOT_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)
