"""Pytest configuration and shared fakes for audit-ops tests."""

from __future__ import annotations

import gzip
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, ClassVar

import pytest

from audit_ops.config import Config, set_config
from audit_ops.exceptions import BackupError, MissingObjectError, StoreError
from audit_ops.models import DeletionScope, StoreKind
from audit_ops.runner import CommandResult, CommandRunner
from audit_ops.stores.base import DataStore

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path
    from typing import IO

    from audit_ops.models import RetentionRule, SnapshotArtifact


FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
ENV_PREFIXES = ("AUDIT_OPS_", "POSTGRES_", "MONGO_", "NEO4J_")


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests that need running containers")


# =============================================================================
# Scripted command runner
# =============================================================================


@dataclass
class ScriptedResponse:
    """Canned outcome for commands whose joined argv contains ``match``."""

    match: str
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0
    payload: bytes = b""
    action: Callable[[list[str]], None] | None = None
    once: bool = False
    used: bool = False


class FakeRunner(CommandRunner):
    """CommandRunner that records argv and replays scripted responses."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[list[str]] = []
        self.stdin: list[bytes] = []
        self._responses: list[ScriptedResponse] = []

    def on(self, match: str, **kwargs: Any) -> FakeRunner:
        self._responses.append(ScriptedResponse(match=match, **kwargs))
        return self

    def _respond(self, argv: list[str]) -> ScriptedResponse:
        self.calls.append(argv)
        joined = " ".join(argv)
        for response in self._responses:
            if response.match in joined and not (response.once and response.used):
                response.used = True
                if response.action is not None:
                    response.action(argv)
                return response
        return ScriptedResponse(match="")

    def run(
        self,
        argv: Sequence[str],
        *,
        input_data: bytes | None = None,
        check: bool = True,
    ) -> CommandResult:
        argv = list(argv)
        response = self._respond(argv)
        result = CommandResult(argv, response.returncode, response.stdout, response.stderr)
        self._finish(result, check)
        return result

    def stream_out(self, argv: Sequence[str], sink: IO[bytes], *, check: bool = True) -> CommandResult:
        argv = list(argv)
        response = self._respond(argv)
        sink.write(response.payload)
        result = CommandResult(argv, response.returncode, stderr=response.stderr)
        self._finish(result, check)
        return result

    def stream_in(self, argv: Sequence[str], source: IO[bytes], *, check: bool = True) -> CommandResult:
        argv = list(argv)
        response = self._respond(argv)
        self.stdin.append(source.read())
        result = CommandResult(argv, response.returncode, response.stdout, response.stderr)
        self._finish(result, check)
        return result

    def commands(self) -> list[str]:
        """Joined argv of every recorded call."""
        return [" ".join(argv) for argv in self.calls]

    def index_of(self, fragment: str) -> int:
        for i, command in enumerate(self.commands()):
            if fragment in command:
                return i
        raise AssertionError(f"No command containing {fragment!r}: {self.commands()}")

    def index_of_tool(self, tool: str) -> int:
        """Index of the first call that runs ``tool`` as an argv element."""
        for i, argv in enumerate(self.calls):
            if tool in argv:
                return i
        raise AssertionError(f"No command running {tool!r}: {self.commands()}")


# =============================================================================
# In-memory store
# =============================================================================


class MemoryStore(DataStore):
    """
    DataStore over plain dictionaries.

    Tables map a target name to a list of records. Timestamps are stored
    as datetimes; graph edges as a list under the ``edges`` key.
    """

    kind: ClassVar[StoreKind] = StoreKind.RELATIONAL
    primary_suffix = ".json.gz"

    def __init__(
        self,
        kind: StoreKind = StoreKind.RELATIONAL,
        tables: dict[str, list[dict[str, Any]]] | None = None,
        db_name: str = "testdb",
    ) -> None:
        super().__init__(client=None, db_name=db_name)  # type: ignore[arg-type]
        self.kind = kind  # type: ignore[misc]
        self.tables: dict[str, list[dict[str, Any]]] = tables if tables is not None else {}
        self.fail_on: set[str] = set()
        self.count_calls: list[tuple[str, datetime | None]] = []
        self.delete_calls: list[tuple[str, datetime | None]] = []
        self.loaded: list[Path] = []

    def _matches(self, rule: RetentionRule, cutoff: datetime | None) -> list[dict[str, Any]]:
        if rule.name in self.fail_on:
            raise StoreError.command_failed(self.name, "memory", 1, f"scripted failure for {rule.name}")
        if rule.target not in self.tables:
            raise MissingObjectError.for_target(self.name, rule.target)

        records = self.tables[rule.target]
        if rule.scope == DeletionScope.AGE:
            assert cutoff is not None and rule.timestamp_field is not None
            records = [r for r in records if r[rule.timestamp_field] < cutoff]
        records = [r for r in records if all(r.get(k) == v for k, v in rule.predicate.items())]

        orphan = rule.orphan
        if rule.scope == DeletionScope.ORPHAN and orphan is not None:
            if orphan.reference_collection:
                if orphan.reference_collection not in self.tables:
                    raise MissingObjectError.for_target(self.name, orphan.reference_collection)
                ids = {r.get(orphan.reference_field) for r in self.tables[orphan.reference_collection]}
                records = [r for r in records if r.get(orphan.foreign_key) not in ids]
            if orphan.relationship_type:
                records = [r for r in records if orphan.relationship_type not in r.get("edges", [])]
        return records

    def count(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        self.count_calls.append((rule.name, cutoff))
        return len(self._matches(rule, cutoff))

    def delete(self, rule: RetentionRule, cutoff: datetime | None) -> int:
        self.delete_calls.append((rule.name, cutoff))
        doomed = {id(r) for r in self._matches(rule, cutoff)}
        self.tables[rule.target] = [r for r in self.tables[rule.target] if id(r) not in doomed]
        return len(doomed)

    def dump(self, directory: Path, stem: str) -> SnapshotArtifact:
        if "dump" in self.fail_on:
            raise BackupError.dump_failed(self.name, "scripted failure")
        path = directory / f"{stem}{self.primary_suffix}"
        with gzip.open(path, "wt", encoding="utf-8") as f:
            json.dump(self.tables, f, default=_encode)
        return self.describe(path)

    def load(self, artifact: SnapshotArtifact) -> None:
        if "load" in self.fail_on:
            raise StoreError.command_failed(self.name, "memory", 1, "scripted load failure")
        with gzip.open(artifact.path, "rt", encoding="utf-8") as f:
            self.tables = json.load(f, object_hook=_decode)
        self.loaded.append(artifact.path)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"__dt__": value.isoformat()}
    raise TypeError(f"Cannot encode {value!r}")


def _decode(obj: dict[str, Any]) -> Any:
    if set(obj) == {"__dt__"}:
        return datetime.fromisoformat(obj["__dt__"])
    return obj


class TickingClock:
    """Clock that advances by ``step`` on every call."""

    def __init__(self, start: datetime = FIXED_NOW, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    """Give every test a default config rooted in its own temp directory."""
    for var in list(os.environ):
        if var.startswith(ENV_PREFIXES):
            monkeypatch.delenv(var, raising=False)
    config = Config.from_dict(
        {
            "backup": {"root_directory": str(tmp_path / "backups")},
            "locking": {"directory": str(tmp_path / "locks")},
            "logging": {"directory": str(tmp_path / "logs"), "file_enabled": False},
        }
    )
    set_config(config)
    yield config
    set_config(None)
    logging.getLogger().handlers = []


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def ticking_clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def make_store() -> type[MemoryStore]:
    """The in-memory DataStore class, for tests that build several stores."""
    return MemoryStore


@pytest.fixture
def hourly_clock() -> TickingClock:
    return TickingClock(step=timedelta(hours=1))
