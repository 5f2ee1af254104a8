"""
Document store adapter (MongoDB through mongosh, mongodump and mongorestore).

Queries are small mongosh scripts whose last output line is a JSON
object, so counts never have to be scraped from free-form text.
"""

from __future__ import annotations

import json
import tarfile
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from audit_ops.exceptions import (
    BackupError,
    MissingObjectError,
    RestoreError,
    StoreError,
)
from audit_ops.logging import get_logger
from audit_ops.models import DeletionScope, StoreKind
from audit_ops.stores.base import DataStore

if TYPE_CHECKING:
    from audit_ops.config import MongoConfig
    from audit_ops.models import RetentionRule, SnapshotArtifact
    from audit_ops.runner import ContainerClient

logger = get_logger(__name__)

RESTORE_STAGING_PATH = "/tmp/mongorestore_data"


def to_ejson_date(value: datetime) -> dict[str, str]:
    """Render a datetime as an Extended JSON date."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return {"$date": value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"}


class MongoStore(DataStore):
    """Counts, deletes, dumps and restores the document database."""

    kind = StoreKind.DOCUMENT
    primary_suffix = ".tar.gz"

    def __init__(
        self,
        client: ContainerClient,
        settings: MongoConfig,
        compression_level: int = 6,
    ) -> None:
        super().__init__(client, settings.db, compression_level)
        self.settings = settings

    def _auth_args(self, style: str = "space") -> list[str]:
        pairs = [
            ("--username", self.settings.user),
            ("--password", self.settings.password),
            ("--authenticationDatabase", self.settings.auth_db),
        ]
        if style == "equals":
            return [f"{flag}={value}" for flag, value in pairs]
        return [item for pair in pairs for item in pair]

    def filter_document(self, rule: RetentionRule, cutoff: datetime | None) -> dict[str, Any]:
        """Build the query filter shared by count and delete (orphan clause excluded)."""
        query: dict[str, Any] = dict(rule.predicate)
        if rule.scope == DeletionScope.AGE:
            if cutoff is None or rule.timestamp_field is None:
                raise ValueError(f"Age rule {rule.name!r} needs a cutoff")
            query[rule.timestamp_field] = {"$lt": to_ejson_date(cutoff)}
        return query

    def build_script(self, rule: RetentionRule, cutoff: datetime | None, delete: bool) -> str:
        """Render the mongosh script that counts or deletes a rule's matches."""
        target = json.dumps(rule.target)
        required = [rule.target]
        lines = [
            f"use({json.dumps(self.db_name)});",
            f"const filter = EJSON.parse({json.dumps(json.dumps(self.filter_document(rule, cutoff)))});",
        ]

        orphan = rule.orphan if rule.scope == DeletionScope.ORPHAN else None
        if orphan is not None:
            if not (orphan.foreign_key and orphan.reference_collection and orphan.reference_field):
                raise ValueError(f"Orphan rule {rule.name!r} needs foreign_key and reference collection")
            required.append(orphan.reference_collection)

        lines.append("const names = db.getCollectionNames();")
        lines.append(f"const missing = {json.dumps(required)}.filter((n) => !names.includes(n));")
        lines.append("if (missing.length > 0) {")
        lines.append("  print(JSON.stringify({missing: missing}));")
        lines.append("} else {")
        if orphan is not None:
            lines.append(
                f"  const ids = db.getCollection({json.dumps(orphan.reference_collection)})"
                f".distinct({json.dumps(orphan.reference_field)});"
            )
            lines.append(f"  filter[{json.dumps(orphan.foreign_key)}] = {{$nin: ids}};")
        if delete:
            lines.append(f"  const result = db.getCollection({target}).deleteMany(filter);")
            lines.append("  print(JSON.stringify({missing: [], count: result.deletedCount}));")
        else:
            lines.append(f"  const n = db.getCollection({target}).countDocuments(filter);")
            lines.append("  print(JSON.stringify({missing: [], count: n}));")
        lines.append("}")
        return "\n".join(lines)

    def _evaluate(self, rule: RetentionRule, cutoff: datetime | None, delete: bool) -> int:
        self._check_rule(rule)
        script = self.build_script(rule, cutoff, delete)
        result = self.client.exec(["mongosh", *self._auth_args(), "--quiet", "--eval", script])

        lines = result.lines()
        try:
            payload = json.loads(lines[-1])
        except (IndexError, ValueError):
            raise StoreError.invalid_output(self.name, "mongosh", result.stdout) from None

        if payload.get("missing"):
            raise MissingObjectError.for_target(self.name, ",".join(payload["missing"]))
        try:
            return int(payload["count"])
        except (KeyError, TypeError, ValueError):
            raise StoreError.invalid_output(self.name, "mongosh", result.stdout) from None

    def count(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        return self._evaluate(rule, cutoff, delete=False)

    def delete(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        return self._evaluate(rule, cutoff, delete=True)

    def dump(self, directory: Path, stem: str) -> SnapshotArtifact:
        timestamp = stem[len(self.db_name) + 1 :]
        container_dir = f"/tmp/mongodump_{timestamp}"
        archive = directory / f"{stem}{self.primary_suffix}"

        with tempfile.TemporaryDirectory(prefix=".mongodump_", dir=directory) as staging:
            local_dump = Path(staging) / stem
            try:
                self.client.exec(
                    [
                        "mongodump",
                        *self._auth_args("equals"),
                        f"--db={self.db_name}",
                        f"--out={container_dir}",
                        "--quiet",
                    ]
                )
                self.client.copy_from(f"{container_dir}/{self.db_name}", local_dump)
            except StoreError as e:
                raise BackupError.dump_failed(self.name, e.message, cause=e) from e
            finally:
                self.client.remove(container_dir)

            try:
                with tarfile.open(archive, "w:gz", compresslevel=self.compression_level) as tar:
                    tar.add(local_dump, arcname=stem)
            except (OSError, tarfile.TarError) as e:
                archive.unlink(missing_ok=True)
                raise BackupError.compression_failed(str(archive), cause=e) from e

        return self.describe(archive)

    def load(self, artifact: SnapshotArtifact) -> None:
        with tempfile.TemporaryDirectory(prefix="mongorestore_") as staging:
            try:
                with tarfile.open(artifact.path, "r:gz") as tar:
                    tar.extractall(path=staging, filter="data")
            except (OSError, tarfile.TarError) as e:
                raise RestoreError.unknown_format(str(artifact.path), self.name) from e

            dump_dirs = sorted(p for p in Path(staging).iterdir() if p.is_dir())
            if not dump_dirs:
                raise RestoreError.unknown_format(str(artifact.path), self.name)

            self.client.remove(RESTORE_STAGING_PATH)
            try:
                self.client.copy_to(dump_dirs[0], RESTORE_STAGING_PATH)
                self.client.exec(
                    [
                        "mongorestore",
                        *self._auth_args("equals"),
                        f"--db={self.db_name}",
                        "--drop",
                        RESTORE_STAGING_PATH,
                        "--quiet",
                    ]
                )
            finally:
                self.client.remove(RESTORE_STAGING_PATH)

        logger.info("mongodb_database_restored", db=self.db_name, path=str(artifact.path))
