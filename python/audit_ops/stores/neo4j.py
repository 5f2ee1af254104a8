"""
Graph store adapter (Neo4j through cypher-shell and neo4j-admin).

Community Edition has no online backup, so the primary snapshot stops
the database for an offline ``neo4j-admin database dump``. When that
fails the adapter falls back to a live APOC JSON export, which is slower
to restore but does not need the database stopped.
"""

from __future__ import annotations

import json
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from audit_ops.exceptions import BackupError, StoreError
from audit_ops.logging import get_logger
from audit_ops.models import DeletionScope, SnapshotFormat, StoreKind
from audit_ops.stores.base import DataStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from audit_ops.config import Neo4jConfig, Neo4jMaintenanceConfig
    from audit_ops.models import RetentionRule, SnapshotArtifact
    from audit_ops.runner import ContainerClient

logger = get_logger(__name__)

BACKUP_STAGING_PATH = "/tmp/neo4j_backup"
RESTORE_STAGING_PATH = "/tmp/neo4j_restore"
EXPORT_QUERY = "CALL apoc.export.json.all(null, {stream: true}) YIELD data RETURN data"


def quote_name(name: str) -> str:
    """Quote a label, relationship type or property key."""
    return "`" + name.replace("`", "``") + "`"


def cypher_literal(value: Any) -> str:
    """Render a Python value as a Cypher literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return f"datetime({json.dumps(value.isoformat())})"
    if isinstance(value, str):
        return json.dumps(value)
    raise ValueError(f"Unsupported Cypher literal: {value!r}")


def decode_export(output: str) -> str:
    """
    Turn ``cypher-shell --format plain`` output of the APOC export into JSON lines.

    The output is a ``data`` header followed by one quoted string per
    row. Each string holds newline-separated JSON records.
    """
    lines = output.splitlines()
    if lines and lines[0].strip() == "data":
        lines = lines[1:]
    body = "\n".join(lines).strip()

    decoder = json.JSONDecoder(strict=False)
    chunks: list[str] = []
    index = 0
    while index < len(body):
        if body[index].isspace():
            index += 1
            continue
        if body[index] != '"':
            raise ValueError(f"Unexpected export row at offset {index}")
        chunk, index = decoder.raw_decode(body, index)
        chunks.append(chunk.strip())

    if not chunks:
        raise ValueError("Export produced no rows")
    return "\n".join(c for c in chunks if c) + "\n"


class Neo4jStore(DataStore):
    """Counts, deletes, dumps and loads the graph database."""

    kind = StoreKind.GRAPH
    primary_suffix = ".dump.gz"
    fallback_suffix = "_cypher.json.gz"

    def __init__(
        self,
        client: ContainerClient,
        settings: Neo4jConfig,
        maintenance: Neo4jMaintenanceConfig,
        compression_level: int = 6,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(client, settings.db, compression_level)
        self.settings = settings
        self.maintenance = maintenance
        self._sleep = sleep

    def _cypher(self, query: str) -> list[str]:
        return [
            "cypher-shell",
            "-u",
            self.settings.user,
            "-p",
            self.settings.password,
            "-d",
            self.db_name,
            "--format",
            "plain",
            query,
        ]

    def match_clause(self, rule: RetentionRule, cutoff: datetime | None) -> str:
        """Build the ``MATCH ... WHERE ...`` prefix shared by count and delete."""
        conditions: list[str] = []

        if rule.scope == DeletionScope.AGE:
            if cutoff is None or rule.timestamp_field is None:
                raise ValueError(f"Age rule {rule.name!r} needs a cutoff")
            conditions.append(f"n.{quote_name(rule.timestamp_field)} < {cypher_literal(cutoff)}")

        for key, value in rule.predicate.items():
            conditions.append(f"n.{quote_name(key)} = {cypher_literal(value)}")

        if rule.scope == DeletionScope.ORPHAN and rule.orphan is not None:
            if not rule.orphan.relationship_type:
                raise ValueError(f"Orphan rule {rule.name!r} needs a relationship type")
            conditions.append(f"NOT (n)-[:{quote_name(rule.orphan.relationship_type)}]->()")

        clause = f"MATCH (n:{quote_name(rule.target)})"
        if conditions:
            clause += " WHERE " + " AND ".join(conditions)
        return clause

    def _scalar(self, query: str) -> int:
        result = self.client.exec(self._cypher(query))
        lines = result.lines()
        try:
            return int(lines[-1])
        except (IndexError, ValueError):
            raise StoreError.invalid_output(self.name, "cypher-shell", result.stdout) from None

    def count(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        self._check_rule(rule)
        return self._scalar(f"{self.match_clause(rule, cutoff)} RETURN count(n) AS cnt;")

    def delete(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        self._check_rule(rule)
        return self._scalar(f"{self.match_clause(rule, cutoff)} DETACH DELETE n RETURN count(*) AS deleted;")

    # =========================================================================
    # Database lifecycle
    # =========================================================================

    def _stop(self) -> None:
        try:
            self.client.exec(["neo4j", "stop"])
        except StoreError as e:
            # Already stopped is fine; the dump or load reports real problems.
            logger.warning("neo4j_stop_failed", error=str(e))
        self._sleep(self.maintenance.stop_grace_seconds)

    def _start(self) -> None:
        self.client.exec(["neo4j", "start"])
        logger.info("neo4j_restarted", db=self.db_name)

    # =========================================================================
    # Snapshots
    # =========================================================================

    def dump(self, directory: Path, stem: str) -> SnapshotArtifact:
        try:
            return self._offline_dump(directory, stem)
        except StoreError as e:
            logger.warning("neo4j_dump_failed_using_fallback", error=str(e))

        self._sleep(self.maintenance.start_wait_seconds)
        try:
            return self._export_dump(directory, stem)
        except (StoreError, ValueError) as e:
            raise BackupError.dump_failed(self.name, f"offline dump and live export both failed: {e}", cause=e) from e

    def _offline_dump(self, directory: Path, stem: str) -> SnapshotArtifact:
        self._stop()
        try:
            self.client.exec(["mkdir", "-p", BACKUP_STAGING_PATH])
            self.client.exec(
                [
                    "neo4j-admin",
                    "database",
                    "dump",
                    self.db_name,
                    f"--to-path={BACKUP_STAGING_PATH}",
                ]
            )
        except BaseException as e:
            logger.warning("neo4j_offline_dump_failed", db=self.db_name, error=str(e))
            self.client.remove(BACKUP_STAGING_PATH)
            raise
        finally:
            self._start()

        local_dump = directory / f".{stem}.dump"
        try:
            self.client.copy_from(f"{BACKUP_STAGING_PATH}/{self.db_name}.dump", local_dump)
        except StoreError:
            local_dump.unlink(missing_ok=True)
            raise
        finally:
            self.client.remove(BACKUP_STAGING_PATH)

        path = directory / f"{stem}{self.primary_suffix}"
        self._gzip_file(local_dump, path)
        return self.describe(path)

    def _export_dump(self, directory: Path, stem: str) -> SnapshotArtifact:
        result = self.client.exec(self._cypher(EXPORT_QUERY))
        content = decode_export(result.stdout)

        path = directory / f"{stem}{self.fallback_suffix}"
        try:
            with self._gzip_writer(path) as sink:
                sink.write(content.encode("utf-8"))
        except OSError as e:
            raise BackupError.compression_failed(str(path), cause=e) from e

        logger.warning("neo4j_fallback_export_created", path=str(path))
        return self.describe(path)

    def load(self, artifact: SnapshotArtifact) -> None:
        if artifact.format == SnapshotFormat.FALLBACK:
            self._import_export(artifact)
        else:
            self._offline_load(artifact)
        logger.info(
            "neo4j_database_loaded",
            db=self.db_name,
            path=str(artifact.path),
            format=artifact.format.value,
        )

    def _offline_load(self, artifact: SnapshotArtifact) -> None:
        with tempfile.TemporaryDirectory(prefix="neo4j_restore_") as staging:
            local_dump = Path(staging) / f"{self.db_name}.dump"
            self._gunzip_file(artifact.path, local_dump)

            self._stop()
            try:
                self.client.exec(["mkdir", "-p", RESTORE_STAGING_PATH])
                self.client.copy_to(local_dump, f"{RESTORE_STAGING_PATH}/{self.db_name}.dump")
                self.client.exec(
                    [
                        "neo4j-admin",
                        "database",
                        "load",
                        self.db_name,
                        f"--from-path={RESTORE_STAGING_PATH}",
                        "--overwrite-destination",
                    ]
                )
            finally:
                self.client.remove(RESTORE_STAGING_PATH)
                self._start()

    def _import_export(self, artifact: SnapshotArtifact) -> None:
        name = artifact.path.name.removesuffix(".gz")
        container_path = f"{self.settings.import_dir.rstrip('/')}/{name}"

        with tempfile.TemporaryDirectory(prefix="neo4j_import_") as staging:
            local_export = Path(staging) / name
            self._gunzip_file(artifact.path, local_export)

            self.client.copy_to(local_export, container_path)
            try:
                self.client.exec(self._cypher("MATCH (n) DETACH DELETE n;"))
                self.client.exec(self._cypher(f"CALL apoc.import.json({json.dumps('file:///' + name)});"))
            finally:
                self.client.remove(container_path)
