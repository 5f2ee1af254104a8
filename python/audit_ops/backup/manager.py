"""
Snapshot lifecycle for one store: backup, restore, list and prune.

The filesystem listing is the only catalog. Artifacts are named
``<db>_<YYYYMMDD_HHMMSS><suffix>`` and sorted newest first by
modification time, with the file name as tiebreak.

Design Patterns:
- Command Pattern: backup and restore as guarded operations
- Repository Pattern: the backup directory as artifact store
"""

from __future__ import annotations

import contextlib
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from audit_ops.exceptions import BackupError, RestoreError, StoreError
from audit_ops.logging import get_logger, with_context
from audit_ops.models import RestoreOutcome, RestoreRequest, SnapshotFormat, snapshot_stem

if TYPE_CHECKING:
    from collections.abc import Callable

    from audit_ops.config import BackupConfig
    from audit_ops.locking import LockManager
    from audit_ops.models import SnapshotArtifact
    from audit_ops.stores.base import DataStore

logger = get_logger(__name__)

CONFIRM_ANSWERS = frozenset({"y", "Y", "yes"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BackupManager:
    """
    Backup, restore and list snapshots of one store.

    Example:
        manager = BackupManager(create_store(StoreKind.RELATIONAL, config), config.backup)
        artifact = manager.backup()
        manager.restore(artifact.path, confirm=True)
    """

    def __init__(
        self,
        store: DataStore,
        config: BackupConfig,
        locks: LockManager | None = None,
        clock: Callable[[], datetime] = utc_now,
        prompt: Callable[[str], str] = input,
    ) -> None:
        self._store = store
        self._config = config
        self._locks = locks
        self._clock = clock
        self._prompt = prompt

    @property
    def store(self) -> DataStore:
        return self._store

    @property
    def default_directory(self) -> Path:
        return self._config.directory_for(self._store.kind)

    def _resolve(self, directory: str | Path | None) -> Path:
        return Path(directory) if directory else self.default_directory

    def _hold(self, operation: str) -> contextlib.AbstractContextManager[None]:
        if self._locks is None:
            return contextlib.nullcontext()
        return self._locks.hold(self._store.kind, operation=operation)

    # =========================================================================
    # Backup
    # =========================================================================

    def backup(self, output_dir: str | Path | None = None) -> SnapshotArtifact:
        """
        Create a snapshot and prune the directory to ``max_backups``.

        Raises:
            BackupError: If the snapshot could not be produced or its name
                is already taken.
            LockError: If another operation holds the store lock.
        """
        directory = self._resolve(output_dir)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupError.directory_unusable(str(directory), e) from e
        stem = snapshot_stem(self._store.db_name, self._clock())

        with with_context(store=self._store.name, operation="backup"), self._hold("backup"):
            for candidate in self._store.artifact_paths(directory, stem):
                if candidate.exists():
                    raise BackupError.artifact_exists(str(candidate))

            logger.info("backup_started", db=self._store.db_name, directory=str(directory))
            start_time = time.perf_counter()

            try:
                artifact = self._store.dump(directory, stem)
            except BackupError as e:
                logger.error("backup_failed", **e.to_dict())
                raise
            except StoreError as e:
                logger.error("backup_failed", **e.to_dict())
                raise BackupError.dump_failed(self._store.name, e.message, cause=e) from e

            logger.info(
                "backup_created",
                path=str(artifact.path),
                size=artifact.human_size,
                format=artifact.format.value,
                duration_seconds=round(time.perf_counter() - start_time, 3),
            )
            if artifact.format == SnapshotFormat.FALLBACK:
                logger.warning("backup_degraded", path=str(artifact.path))

            self.prune(directory)

        return artifact

    def prune(self, directory: str | Path | None = None) -> list[Path]:
        """
        Delete all but the newest ``max_backups`` artifacts.

        Returns:
            Paths that were removed.
        """
        artifacts = self.list(directory)
        excess = artifacts[self._config.max_backups :]
        removed: list[Path] = []

        for artifact in excess:
            try:
                artifact.path.unlink()
                removed.append(artifact.path)
                logger.info("snapshot_pruned", path=str(artifact.path))
            except OSError as e:
                logger.warning("snapshot_prune_failed", path=str(artifact.path), error=str(e))

        if removed:
            logger.info(
                "old_snapshots_cleaned",
                deleted_count=len(removed),
                remaining_count=len(artifacts) - len(removed),
                max_backups=self._config.max_backups,
            )
        return removed

    # =========================================================================
    # Restore
    # =========================================================================

    def classify(self, path: Path) -> SnapshotFormat:
        """
        Determine the format of an artifact, falling back to its suffix for renamed files.

        Raises:
            RestoreError: If the file does not look like a snapshot of this store.
        """
        snapshot_format = self._store.artifact_format(path)
        if snapshot_format is not None:
            return snapshot_format

        for suffix, candidate in sorted(self._store.suffixes.items(), key=lambda item: -len(item[0])):
            if path.name.endswith(suffix):
                return candidate
        raise RestoreError.unknown_format(str(path), self._store.name)

    def confirm(self) -> bool:
        """Ask the operator for explicit confirmation."""
        message = (
            f"WARNING: This will overwrite the current {self._store.name} database "
            f"'{self._store.db_name}'!\n    Continue? (y/N): "
        )
        try:
            answer = self._prompt(message)
        except (EOFError, KeyboardInterrupt):
            return False
        return answer.strip() in CONFIRM_ANSWERS

    def restore(self, artifact_path: str | Path, confirm: bool | None = None) -> RestoreOutcome:
        """
        Replace the store contents with a snapshot.

        Args:
            artifact_path: Snapshot file to restore.
            confirm: True skips the prompt, False declines, None asks.

        Raises:
            RestoreError: If the file is missing, unrecognized, or the load fails.
            LockError: If another operation holds the store lock.
        """
        path = Path(artifact_path)
        if not path.is_file():
            raise RestoreError.artifact_not_found(str(path))

        snapshot_format = self.classify(path)
        artifact = self._store.describe(path)
        artifact.format = snapshot_format
        request = RestoreRequest(store=self._store.kind, artifact=artifact, confirmed=bool(confirm))

        if confirm is None:
            request.confirmed = self.confirm()

        if not request.confirmed:
            logger.info("restore_cancelled", store=self._store.name, path=str(path))
            return RestoreOutcome.CANCELLED

        with with_context(store=self._store.name, operation="restore"), self._hold("restore"):
            logger.info("restore_started", path=str(path), format=snapshot_format.value)
            start_time = time.perf_counter()
            try:
                self._store.load(request.artifact)
            except StoreError as e:
                logger.error("restore_failed", **e.to_dict())
                raise RestoreError.load_failed(self._store.name, str(path), cause=e) from e
            except OSError as e:
                logger.error("restore_failed", path=str(path), error=str(e))
                raise RestoreError.load_failed(self._store.name, str(path), cause=e) from e

            logger.info(
                "restore_completed",
                path=str(path),
                duration_seconds=round(time.perf_counter() - start_time, 3),
            )

        return RestoreOutcome.RESTORED

    # =========================================================================
    # Listing
    # =========================================================================

    def list(self, directory: str | Path | None = None) -> list[SnapshotArtifact]:
        """List artifacts, newest first. Missing or empty directories yield an empty list."""
        directory = self._resolve(directory)
        if not directory.is_dir():
            return []

        entries: list[tuple[float, str, Path]] = []
        for path in directory.iterdir():
            if path.is_file() and self._store.artifact_format(path) is not None:
                entries.append((path.stat().st_mtime, path.name, path))

        entries.sort(reverse=True)
        return [self._store.describe(path) for _, _, path in entries]
