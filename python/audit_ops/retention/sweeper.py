"""
Fail-soft retention sweep over an ordered list of rules.

For every rule the sweeper counts the matching records and, unless
running dry, deletes them. A failing rule is recorded on its result and
the sweep moves on to the next one.

Design Patterns:
- Strategy Pattern: store adapters behind the DataStore interface
- Observer Pattern: per-rule notifications for progress output
"""

from __future__ import annotations

import contextlib
import time
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

from audit_ops.exceptions import AuditOpsError, MissingObjectError
from audit_ops.logging import get_logger, with_context
from audit_ops.models import SweepResult, SweepSummary
from audit_ops.retention.rules import select_rules

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from audit_ops.locking import LockManager
    from audit_ops.models import RetentionRule, StoreKind
    from audit_ops.stores.base import DataStore

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SweepObserver(Protocol):
    """Protocol for sweep progress observers."""

    def on_rule_completed(self, result: SweepResult, dry_run: bool) -> None:
        """Handle a finished rule."""
        ...


class RetentionSweeper:
    """
    Runs retention rules against their stores.

    The age cutoff is computed once per run from the injected clock, so
    every rule in a run, and both the count and delete of one rule, see
    the same cutoff.
    """

    def __init__(
        self,
        stores: Mapping[StoreKind, DataStore],
        locks: LockManager | None = None,
        clock: Callable[[], datetime] = utc_now,
        observers: Sequence[SweepObserver] | None = None,
    ) -> None:
        self._stores = dict(stores)
        self._locks = locks
        self._clock = clock
        self._observers: list[SweepObserver] = list(observers) if observers else []

    def add_observer(self, observer: SweepObserver) -> None:
        self._observers.append(observer)

    def run(
        self,
        rules: Sequence[RetentionRule],
        dry_run: bool,
        only: Iterable[str] | None = None,
    ) -> SweepSummary:
        """
        Run a sweep.

        Args:
            rules: Rules in execution order.
            dry_run: Count only, never delete.
            only: Optional subset of rule names to run.

        Returns:
            Summary with one result per executed rule.

        Raises:
            ValueError: If ``only`` names an unknown rule.
        """
        selected = select_rules(rules, only)
        reference_time = self._clock()
        summary = SweepSummary(dry_run=dry_run, started_at=reference_time)

        with with_context(run_id=uuid.uuid4().hex[:12], dry_run=dry_run):
            logger.info(
                "sweep_started",
                rule_count=len(selected),
                reference_time=reference_time.isoformat(),
            )

            for rule in selected:
                result = self._run_rule(rule, reference_time, dry_run)
                summary.results.append(result)
                self._notify(result, dry_run)

            summary.finished_at = self._clock()
            logger.info(
                "sweep_completed",
                total_matched=summary.total_matched,
                total_deleted=summary.total_deleted,
                error_count=len(summary.failed),
            )

        return summary

    def _run_rule(self, rule: RetentionRule, reference_time: datetime, dry_run: bool) -> SweepResult:
        start_time = time.perf_counter()
        result = SweepResult(rule=rule)
        cutoff = rule.cutoff(reference_time)

        store = self._stores.get(rule.store)
        if store is None:
            result.error = f"No adapter configured for {rule.store.engine}"
            logger.error("sweep_rule_failed", rule=rule.name, error=result.error)
            return result

        try:
            with self._hold(rule, dry_run):
                result.matched = store.count(rule, cutoff)
                if not dry_run and result.matched > 0:
                    result.deleted = store.delete(rule, cutoff)
        except MissingObjectError as e:
            result.skipped = True
            result.matched = 0
            logger.info("sweep_rule_skipped", rule=rule.name, reason=e.message)
        except AuditOpsError as e:
            result.error = str(e)
            logger.error("sweep_rule_failed", rule=rule.name, **e.to_dict())
        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            logger.exception("sweep_rule_failed", rule=rule.name, error=str(e))

        result.duration_seconds = time.perf_counter() - start_time

        if result.succeeded and not result.skipped:
            logger.info(
                "sweep_rule_completed",
                rule=rule.name,
                store=rule.store.engine,
                cutoff=cutoff.isoformat() if cutoff else None,
                matched=result.matched,
                deleted=result.deleted,
                duration_seconds=round(result.duration_seconds, 3),
            )
        return result

    def _hold(self, rule: RetentionRule, dry_run: bool) -> contextlib.AbstractContextManager[None]:
        if dry_run or self._locks is None:
            return contextlib.nullcontext()
        return self._locks.hold(rule.store, operation=f"retention:{rule.name}")

    def _notify(self, result: SweepResult, dry_run: bool) -> None:
        for observer in self._observers:
            try:
                observer.on_rule_completed(result, dry_run)
            except Exception as e:
                logger.warning(
                    "observer_notification_failed",
                    observer=type(observer).__name__,
                    error=str(e),
                )
