"""
Unit tests for the backup manager.

Tests cover:
- Snapshot creation, naming and collision handling
- Pruning to max_backups
- Restore confirmation and outcomes
- Listing order
- Store locking
"""

from __future__ import annotations

import copy
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from audit_ops.backup import BackupManager
from audit_ops.config import BackupConfig, LockingConfig
from audit_ops.exceptions import BackupError, ErrorCode, LockError, RestoreError
from audit_ops.locking import LockManager, StoreLock
from audit_ops.models import RestoreOutcome, SnapshotFormat, StoreKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import MemoryStore, TickingClock

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def _answer(value: str) -> Callable[[str], str]:
    return lambda message: value


def _never_prompt(message: str) -> str:
    raise AssertionError("prompt should not be shown")


@pytest.fixture
def store(make_store: type[MemoryStore]) -> MemoryStore:
    return make_store(
        StoreKind.RELATIONAL,
        {
            "QueryLog": [
                {"id": 1, "createdAt": FIXED_NOW - timedelta(days=400)},
                {"id": 2, "createdAt": FIXED_NOW - timedelta(days=1)},
            ]
        },
    )


@pytest.fixture
def backup_config(tmp_path: Path) -> BackupConfig:
    return BackupConfig(root_directory=str(tmp_path / "backups"), max_backups=3)


# =============================================================================
# Backup
# =============================================================================


class TestBackup:
    """Tests for BackupManager.backup."""

    def test_backup_to_default_directory(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any, tmp_path: Path
    ) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock)

        artifact = manager.backup()

        assert artifact.path == tmp_path / "backups" / "postgres" / "testdb_20260115_120000.json.gz"
        assert artifact.path.is_file()
        assert artifact.created_at == FIXED_NOW
        assert artifact.format == SnapshotFormat.PRIMARY

    def test_backup_to_explicit_directory(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any, tmp_path: Path
    ) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock)

        artifact = manager.backup(tmp_path / "elsewhere" / "nested")

        assert artifact.path.parent == tmp_path / "elsewhere" / "nested"

    def test_name_collision_is_refused(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any
    ) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock)
        first = manager.backup()
        content = first.path.read_bytes()

        with pytest.raises(BackupError) as exc_info:
            manager.backup()

        assert exc_info.value.error_code == ErrorCode.BACKUP_ARTIFACT_EXISTS
        assert first.path.read_bytes() == content

    def test_dump_failure_keeps_existing_snapshots(
        self, store: MemoryStore, backup_config: BackupConfig, hourly_clock: TickingClock
    ) -> None:
        manager = BackupManager(store, backup_config, clock=hourly_clock)
        for _ in range(3):
            manager.backup()
        store.fail_on.add("dump")

        with pytest.raises(BackupError):
            manager.backup()

        assert len(manager.list()) == 3

    def test_prune_keeps_newest(
        self, store: MemoryStore, backup_config: BackupConfig, hourly_clock: TickingClock
    ) -> None:
        manager = BackupManager(store, backup_config, clock=hourly_clock)

        created = [manager.backup() for _ in range(4)]

        remaining = [a.path for a in manager.list()]
        assert remaining == [a.path for a in reversed(created[1:])]
        assert not created[0].path.exists()

    def test_prune_ignores_foreign_files(
        self, store: MemoryStore, backup_config: BackupConfig, hourly_clock: TickingClock
    ) -> None:
        manager = BackupManager(store, backup_config, clock=hourly_clock)
        directory = manager.default_directory
        directory.mkdir(parents=True)
        (directory / "README.txt").write_text("do not delete")
        (directory / "otherdb_20200101_000000.json.gz").write_bytes(b"")

        for _ in range(5):
            manager.backup()

        assert (directory / "README.txt").exists()
        assert (directory / "otherdb_20200101_000000.json.gz").exists()
        assert len(manager.list()) == 3

    def test_prune_returns_removed(self, store: MemoryStore, hourly_clock: TickingClock, tmp_path: Path) -> None:
        manager = BackupManager(store, BackupConfig(root_directory=str(tmp_path), max_backups=10), clock=hourly_clock)
        artifacts = [manager.backup() for _ in range(3)]
        manager = BackupManager(store, BackupConfig(root_directory=str(tmp_path), max_backups=1))

        removed = manager.prune()

        assert set(removed) == {artifacts[0].path, artifacts[1].path}


# =============================================================================
# Restore
# =============================================================================


class TestRestore:
    """Tests for BackupManager.restore."""

    def test_round_trip(self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any) -> None:
        original = copy.deepcopy(store.tables)
        manager = BackupManager(store, backup_config, clock=fixed_clock)
        artifact = manager.backup()
        store.tables["QueryLog"].clear()

        outcome = manager.restore(artifact.path, confirm=True)

        assert outcome == RestoreOutcome.RESTORED
        assert store.tables == original
        assert store.loaded == [artifact.path]

    def test_declined_restore_changes_nothing(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any
    ) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock, prompt=_answer("n"))
        artifact = manager.backup()
        store.tables["QueryLog"].append({"id": 3, "createdAt": FIXED_NOW})

        outcome = manager.restore(artifact.path)

        assert outcome == RestoreOutcome.CANCELLED
        assert store.loaded == []
        assert len(store.tables["QueryLog"]) == 3

    @pytest.mark.parametrize(
        ("answer", "expected"),
        [
            ("y", RestoreOutcome.RESTORED),
            ("Y", RestoreOutcome.RESTORED),
            ("yes", RestoreOutcome.RESTORED),
            ("  yes\n", RestoreOutcome.RESTORED),
            ("", RestoreOutcome.CANCELLED),
            ("no", RestoreOutcome.CANCELLED),
            ("YES", RestoreOutcome.CANCELLED),
        ],
    )
    def test_confirmation_answers(
        self,
        store: MemoryStore,
        backup_config: BackupConfig,
        fixed_clock: Any,
        answer: str,
        expected: RestoreOutcome,
    ) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock, prompt=_answer(answer))
        artifact = manager.backup()

        assert manager.restore(artifact.path) == expected

    def test_prompt_names_store_and_database(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any
    ) -> None:
        messages: list[str] = []

        def record(message: str) -> str:
            messages.append(message)
            return "n"

        manager = BackupManager(store, backup_config, clock=fixed_clock, prompt=record)
        manager.restore(manager.backup().path)

        assert messages[0].startswith("WARNING: This will overwrite the current postgres database 'testdb'!")
        assert messages[0].endswith("Continue? (y/N): ")

    def test_end_of_input_declines(self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any) -> None:
        def eof(message: str) -> str:
            raise EOFError

        manager = BackupManager(store, backup_config, clock=fixed_clock, prompt=eof)

        assert manager.restore(manager.backup().path) == RestoreOutcome.CANCELLED

    def test_confirm_flags_skip_prompt(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any
    ) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock, prompt=_never_prompt)
        path = manager.backup().path

        assert manager.restore(path, confirm=False) == RestoreOutcome.CANCELLED
        assert manager.restore(path, confirm=True) == RestoreOutcome.RESTORED

    def test_missing_file(self, store: MemoryStore, backup_config: BackupConfig, tmp_path: Path) -> None:
        manager = BackupManager(store, backup_config, prompt=_never_prompt)

        with pytest.raises(RestoreError) as exc_info:
            manager.restore(tmp_path / "testdb_20200101_000000.json.gz")

        assert exc_info.value.error_code == ErrorCode.RESTORE_ARTIFACT_NOT_FOUND
        assert store.loaded == []

    def test_unrecognized_file(self, store: MemoryStore, backup_config: BackupConfig, tmp_path: Path) -> None:
        path = tmp_path / "dump.sql"
        path.write_text("SELECT 1;")
        manager = BackupManager(store, backup_config, prompt=_never_prompt)

        with pytest.raises(RestoreError) as exc_info:
            manager.restore(path, confirm=True)

        assert exc_info.value.error_code == ErrorCode.RESTORE_FORMAT_UNKNOWN

    def test_renamed_artifact_is_classified_by_suffix(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any, tmp_path: Path
    ) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock)
        renamed = tmp_path / "before-migration.json.gz"
        manager.backup().path.rename(renamed)

        assert manager.classify(renamed) == SnapshotFormat.PRIMARY
        assert manager.restore(renamed, confirm=True) == RestoreOutcome.RESTORED

    def test_load_failure(self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any) -> None:
        manager = BackupManager(store, backup_config, clock=fixed_clock)
        path = manager.backup().path
        store.fail_on.add("load")

        with pytest.raises(RestoreError) as exc_info:
            manager.restore(path, confirm=True)

        assert exc_info.value.error_code == ErrorCode.RESTORE_LOAD_FAILED
        assert "undefined" in exc_info.value.message


# =============================================================================
# Listing
# =============================================================================


class TestList:
    """Tests for BackupManager.list."""

    def test_missing_directory(self, store: MemoryStore, backup_config: BackupConfig, tmp_path: Path) -> None:
        manager = BackupManager(store, backup_config)

        assert manager.list(tmp_path / "does-not-exist") == []
        assert manager.list() == []

    def test_newest_first_by_mtime(self, store: MemoryStore, backup_config: BackupConfig, tmp_path: Path) -> None:
        directory = tmp_path / "snapshots"
        directory.mkdir()
        names = [
            "testdb_20240101_000000.json.gz",
            "testdb_20240102_000000.json.gz",
            "testdb_20240103_000000.json.gz",
        ]
        mtimes = [1_700_000_300, 1_700_000_100, 1_700_000_200]
        for name, mtime in zip(names, mtimes):
            path = directory / name
            path.write_bytes(b"")
            os.utime(path, (mtime, mtime))

        listed = [a.path.name for a in BackupManager(store, backup_config).list(directory)]

        assert listed == [names[0], names[2], names[1]]

    def test_name_breaks_mtime_ties(self, store: MemoryStore, backup_config: BackupConfig, tmp_path: Path) -> None:
        for name in ("testdb_20240101_000000.json.gz", "testdb_20240102_000000.json.gz"):
            path = tmp_path / name
            path.write_bytes(b"")
            os.utime(path, (1_700_000_000, 1_700_000_000))

        listed = [a.path.name for a in BackupManager(store, backup_config).list(tmp_path)]

        assert listed == ["testdb_20240102_000000.json.gz", "testdb_20240101_000000.json.gz"]


# =============================================================================
# Locking
# =============================================================================


class TestBackupLocking:
    """Tests for store locks around backup and restore."""

    def test_backup_refused_while_locked(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any, tmp_path: Path
    ) -> None:
        locks = LockManager(LockingConfig(directory=str(tmp_path / "locks")))
        manager = BackupManager(store, backup_config, locks=locks, clock=fixed_clock)
        holder = StoreLock(StoreKind.RELATIONAL, tmp_path / "locks")
        holder.acquire("restore")

        try:
            with pytest.raises(LockError):
                manager.backup()
        finally:
            holder.release()

        assert manager.list() == []

    def test_restore_refused_while_locked(
        self, store: MemoryStore, backup_config: BackupConfig, fixed_clock: Any, tmp_path: Path
    ) -> None:
        locks = LockManager(LockingConfig(directory=str(tmp_path / "locks")))
        manager = BackupManager(store, backup_config, locks=locks, clock=fixed_clock)
        path = manager.backup().path
        holder = StoreLock(StoreKind.RELATIONAL, tmp_path / "locks")
        holder.acquire("retention:query_logs")

        try:
            with pytest.raises(LockError) as exc_info:
                manager.restore(path, confirm=True)
        finally:
            holder.release()

        assert exc_info.value.context["owner"]["operation"] == "retention:query_logs"
        assert store.loaded == []
