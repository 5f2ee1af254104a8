"""
Advisory per-store locks.

A lock is an exclusive ``flock`` on ``<lock_dir>/<store>.lock``. The file
also records who holds it so a refused invocation can say why. The OS
drops the lock when the holding process exits, so a crashed run never
leaves a stale lease behind.
"""

from __future__ import annotations

import fcntl
import json
import os
import socket
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from audit_ops.exceptions import LockError
from audit_ops.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

    from audit_ops.config import LockingConfig
    from audit_ops.models import StoreKind

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.2


class StoreLock:
    """Exclusive advisory lock guarding destructive work on one store."""

    def __init__(
        self,
        store: StoreKind,
        directory: Path,
        timeout_seconds: float = 0.0,
    ) -> None:
        self.store = store
        self.path = directory / f"{store.engine}.lock"
        self.timeout_seconds = timeout_seconds
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def read_owner(self) -> dict[str, Any]:
        """Owner metadata written by the current holder, if readable."""
        try:
            content = self.path.read_text()
            return json.loads(content) if content.strip() else {}
        except (OSError, ValueError):
            return {}

    def acquire(self, operation: str) -> None:
        """
        Take the lock, waiting up to ``timeout_seconds``.

        Raises:
            LockError: If another process holds the lock or the lock file
                cannot be opened.
        """
        if self._handle is not None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = self.path.open("a+")
        except OSError as e:
            raise LockError.unusable(self.store.engine, str(self.path), e) from e
        deadline = time.monotonic() + self.timeout_seconds

        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    owner = self.read_owner()
                    logger.warning(
                        "store_lock_refused",
                        store=self.store.engine,
                        operation=operation,
                        owner=owner,
                    )
                    if self.timeout_seconds > 0:
                        raise LockError.timeout(self.store.engine, self.timeout_seconds, owner) from None
                    raise LockError.held(self.store.engine, owner) from None
                time.sleep(POLL_INTERVAL_SECONDS)

        owner = {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "operation": operation,
            "acquired_at": datetime.now(timezone.utc).isoformat(),
        }
        handle.seek(0)
        handle.truncate()
        handle.write(json.dumps(owner))
        handle.flush()
        self._handle = handle

        logger.debug("store_lock_acquired", store=self.store.engine, operation=operation)

    def release(self) -> None:
        """Release the lock if held."""
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.seek(0)
            handle.truncate()
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
        logger.debug("store_lock_released", store=self.store.engine)


class LockManager:
    """Hands out store locks according to the locking configuration."""

    def __init__(self, config: LockingConfig) -> None:
        self.enabled = config.enabled
        self.directory = Path(config.directory)
        self.timeout_seconds = config.timeout_seconds

    def lock_for(self, store: StoreKind) -> StoreLock:
        return StoreLock(store, self.directory, self.timeout_seconds)

    @contextmanager
    def hold(self, store: StoreKind, operation: str) -> Iterator[None]:
        """Hold the store lock for the duration of the block (no-op when disabled)."""
        if not self.enabled:
            yield
            return

        lock = self.lock_for(store)
        lock.acquire(operation)
        try:
            yield
        finally:
            lock.release()
