"""
Capability interface shared by the three store adapters.

A store adapter knows how to count and delete the records a retention
rule selects, and how to turn the whole database into a single
compressed artifact and back. Adapters never decide *whether* to run;
the sweeper and backup manager do.
"""

from __future__ import annotations

import gzip
import re
import shutil
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, ClassVar

from audit_ops.exceptions import BackupError
from audit_ops.logging import get_logger
from audit_ops.models import SnapshotArtifact, SnapshotFormat, StoreKind

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime
    from pathlib import Path

    from audit_ops.models import RetentionRule
    from audit_ops.runner import ContainerClient

logger = get_logger(__name__)


class DataStore(ABC):
    """
    Abstract base class for store adapters.

    Subclasses declare the artifact suffixes they produce. The suffix is
    everything after the ``<db>_<YYYYMMDD_HHMMSS>`` stem, e.g.
    ``.sql.gz`` or ``_cypher.json.gz``.
    """

    kind: ClassVar[StoreKind]
    primary_suffix: ClassVar[str]
    fallback_suffix: ClassVar[str | None] = None

    def __init__(
        self,
        client: ContainerClient,
        db_name: str,
        compression_level: int = 6,
    ) -> None:
        self.client = client
        self.db_name = db_name
        self.compression_level = compression_level

    @property
    def name(self) -> str:
        return self.kind.engine

    @abstractmethod
    def count(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        """
        Count records matching a rule.

        Raises:
            MissingObjectError: If the rule's target does not exist.
            StoreError: On any other tool failure.
        """
        pass

    @abstractmethod
    def delete(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        """Delete records matching a rule and return the affected count."""
        pass

    @abstractmethod
    def dump(self, directory: Path, stem: str) -> SnapshotArtifact:
        """
        Export the database into ``directory`` as ``<stem><suffix>``.

        Raises:
            BackupError: If no artifact could be produced. Partial output
                is removed before raising.
        """
        pass

    @abstractmethod
    def load(self, artifact: SnapshotArtifact) -> None:
        """
        Replace the database contents with an artifact's contents.

        Raises:
            StoreError: If any step fails. Store state is then undefined.
        """
        pass

    # =========================================================================
    # Artifact naming
    # =========================================================================

    @property
    def suffixes(self) -> dict[str, SnapshotFormat]:
        suffixes = {self.primary_suffix: SnapshotFormat.PRIMARY}
        if self.fallback_suffix:
            suffixes[self.fallback_suffix] = SnapshotFormat.FALLBACK
        return suffixes

    def artifact_format(self, path: Path) -> SnapshotFormat | None:
        """Return the snapshot format of a file, or None if it is not an artifact of this store."""
        for suffix, snapshot_format in self.suffixes.items():
            pattern = re.escape(self.db_name) + r"_\d{8}_\d{6}" + re.escape(suffix)
            if re.fullmatch(pattern, path.name):
                return snapshot_format
        return None

    def artifact_paths(self, directory: Path, stem: str) -> list[Path]:
        """Every file name a snapshot with this stem could take."""
        return [directory / f"{stem}{suffix}" for suffix in self.suffixes]

    def describe(self, path: Path) -> SnapshotArtifact:
        snapshot_format = self.artifact_format(path) or SnapshotFormat.PRIMARY
        return SnapshotArtifact.from_path(path, self.kind, self.db_name, snapshot_format)

    def _check_rule(self, rule: RetentionRule) -> None:
        if rule.store != self.kind:
            raise ValueError(f"Rule {rule.name!r} targets {rule.store.engine}, not {self.name}")

    # =========================================================================
    # Compression helpers
    # =========================================================================

    @contextmanager
    def _gzip_writer(self, path: Path) -> Iterator[gzip.GzipFile]:
        """Open ``path`` for compressed writing; the file is removed if the block fails."""
        try:
            with gzip.open(path, "wb", compresslevel=self.compression_level) as sink:
                yield sink
        except BaseException:
            path.unlink(missing_ok=True)
            raise

    def _gzip_file(self, source: Path, destination: Path) -> None:
        """Compress ``source`` into ``destination`` and remove ``source``."""
        try:
            with source.open("rb") as src, self._gzip_writer(destination) as dst:
                shutil.copyfileobj(src, dst)
        except OSError as e:
            raise BackupError.compression_failed(str(destination), cause=e) from e
        finally:
            source.unlink(missing_ok=True)

    @staticmethod
    def _gunzip_file(source: Path, destination: Path) -> None:
        with gzip.open(source, "rb") as src, destination.open("wb") as dst:
            shutil.copyfileobj(src, dst)
