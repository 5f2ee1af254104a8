"""
Relational store adapter (PostgreSQL through psql and pg_dump).
"""

from __future__ import annotations

import gzip
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from audit_ops.exceptions import BackupError, MissingObjectError, StoreError
from audit_ops.logging import get_logger
from audit_ops.models import DeletionScope, StoreKind
from audit_ops.runner import classify_failure
from audit_ops.stores.base import DataStore

if TYPE_CHECKING:
    from pathlib import Path

    from audit_ops.config import PostgresConfig
    from audit_ops.models import RetentionRule, SnapshotArtifact
    from audit_ops.runner import CommandResult, ContainerClient

logger = get_logger(__name__)


def quote_ident(name: str) -> str:
    """Quote an SQL identifier, preserving case."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: Any) -> str:
    """Render a Python value as an SQL literal."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return f"'{value.isoformat()}'::timestamptz"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    raise ValueError(f"Unsupported SQL literal: {value!r}")


class PostgresStore(DataStore):
    """Counts, deletes, dumps and loads the relational database."""

    kind = StoreKind.RELATIONAL
    primary_suffix = ".sql.gz"

    def __init__(
        self,
        client: ContainerClient,
        settings: PostgresConfig,
        compression_level: int = 6,
    ) -> None:
        super().__init__(client, settings.db, compression_level)
        self.settings = settings

    @property
    def _env(self) -> dict[str, str]:
        return {"PGPASSWORD": self.settings.password} if self.settings.password else {}

    def _psql(self, database: str, *args: str) -> list[str]:
        return ["psql", "-U", self.settings.user, "-d", database, "-v", "ON_ERROR_STOP=1", *args]

    def _query(self, sql: str, target: str) -> CommandResult:
        argv = self._psql(self.db_name, "-tA", "-c", sql)
        result = self.client.exec(argv, env=self._env, check=False)
        if result.ok:
            return result

        stderr = result.stderr.lower()
        if "relation" in stderr and "does not exist" in stderr:
            raise MissingObjectError.for_target(self.name, target)
        raise classify_failure(self.name, "psql", result.returncode, result.stderr)

    def _scalar(self, sql: str, target: str) -> int:
        result = self._query(sql, target)
        lines = result.lines()
        try:
            return int(lines[-1])
        except (IndexError, ValueError):
            raise StoreError.invalid_output(self.name, "psql", result.stdout) from None

    def where_clause(self, rule: RetentionRule, cutoff: datetime | None) -> str:
        """Build the WHERE clause shared by count and delete."""
        clauses: list[str] = []

        if rule.scope == DeletionScope.AGE:
            if cutoff is None or rule.timestamp_field is None:
                raise ValueError(f"Age rule {rule.name!r} needs a cutoff")
            clauses.append(f"{quote_ident(rule.timestamp_field)} < {quote_literal(cutoff)}")

        for field_name, value in rule.predicate.items():
            clauses.append(f"{quote_ident(field_name)} = {quote_literal(value)}")

        if rule.scope == DeletionScope.ORPHAN and rule.orphan is not None:
            orphan = rule.orphan
            if not (orphan.foreign_key and orphan.reference_collection and orphan.reference_field):
                raise ValueError(f"Orphan rule {rule.name!r} needs foreign_key and reference table")
            clauses.append(
                f"NOT EXISTS (SELECT 1 FROM {quote_ident(orphan.reference_collection)} ref "
                f"WHERE ref.{quote_ident(orphan.reference_field)} = "
                f"{quote_ident(rule.target)}.{quote_ident(orphan.foreign_key)})"
            )

        return " AND ".join(clauses) or "TRUE"

    def count(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        self._check_rule(rule)
        sql = f"SELECT count(*) FROM {quote_ident(rule.target)} WHERE {self.where_clause(rule, cutoff)};"
        return self._scalar(sql, rule.target)

    def delete(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        self._check_rule(rule)
        sql = (
            f"WITH deleted AS (DELETE FROM {quote_ident(rule.target)} "
            f"WHERE {self.where_clause(rule, cutoff)} RETURNING 1) "
            "SELECT count(*) FROM deleted;"
        )
        return self._scalar(sql, rule.target)

    def dump(self, directory: Path, stem: str) -> SnapshotArtifact:
        path = directory / f"{stem}{self.primary_suffix}"
        argv = [
            "pg_dump",
            "-U",
            self.settings.user,
            "-d",
            self.db_name,
            "--format=plain",
            "--no-owner",
            "--no-privileges",
        ]
        try:
            with self._gzip_writer(path) as sink:
                self.client.exec_to(argv, sink, env=self._env)
        except StoreError as e:
            raise BackupError.dump_failed(self.name, e.message, cause=e) from e
        except OSError as e:
            raise BackupError.compression_failed(str(path), cause=e) from e

        return self.describe(path)

    def load(self, artifact: SnapshotArtifact) -> None:
        maintenance = self.settings.maintenance_db
        database = quote_ident(self.db_name)

        try:
            self.client.exec(
                self._psql(
                    maintenance,
                    "-c",
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    f"WHERE datname = {quote_literal(self.db_name)} AND pid <> pg_backend_pid();",
                ),
                env=self._env,
            )
        except StoreError as e:
            logger.warning("postgres_terminate_backends_failed", db=self.db_name, error=str(e))

        self.client.exec(self._psql(maintenance, "-c", f"DROP DATABASE IF EXISTS {database};"), env=self._env)
        self.client.exec(self._psql(maintenance, "-c", f"CREATE DATABASE {database};"), env=self._env)

        with gzip.open(artifact.path, "rb") as source:
            self.client.exec_from(self._psql(self.db_name, "-q"), source, env=self._env)

        logger.info("postgres_database_loaded", db=self.db_name, path=str(artifact.path))
