"""
The built-in retention rules of the Audit RAG platform.

Order matters: rules run top to bottom and the summary lists them in
the same order.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from audit_ops.models import DeletionScope, OrphanPredicate, RetentionRule, StoreKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from audit_ops.config import RetentionConfig


def default_rules(config: RetentionConfig) -> list[RetentionRule]:
    """Build the fixed, ordered rule list with thresholds from configuration."""
    return [
        RetentionRule(
            name="query_logs",
            store=StoreKind.RELATIONAL,
            target="QueryLog",
            timestamp_field="createdAt",
            max_age=timedelta(days=config.query_log_days),
            description=f"PostgreSQL: Query Logs ({config.query_log_days}-day retention)",
        ),
        RetentionRule(
            name="retrieval_events",
            store=StoreKind.RELATIONAL,
            target="RetrievalEvent",
            timestamp_field="createdAt",
            max_age=timedelta(days=config.retrieval_event_days),
            description=f"PostgreSQL: Retrieval Events ({config.retrieval_event_days}-day retention)",
        ),
        RetentionRule(
            name="checkpoints",
            store=StoreKind.RELATIONAL,
            target="checkpoints",
            timestamp_field="created_at",
            max_age=timedelta(days=config.checkpoint_days),
            description=f"PostgreSQL: Agent Checkpoints ({config.checkpoint_days}-day retention)",
        ),
        RetentionRule(
            name="orphaned_chunks",
            store=StoreKind.DOCUMENT,
            target="chunks",
            scope=DeletionScope.ORPHAN,
            orphan=OrphanPredicate(
                foreign_key="document_id",
                reference_collection="documents",
                reference_field="document_id",
            ),
            description="MongoDB: Orphaned Chunks",
        ),
        RetentionRule(
            name="ingestion_jobs",
            store=StoreKind.DOCUMENT,
            target="ingestion_jobs",
            timestamp_field="created_at",
            max_age=timedelta(days=config.ingestion_job_days),
            predicate={"status": "completed"},
            description=f"MongoDB: Old Ingestion Jobs ({config.ingestion_job_days}-day retention)",
        ),
        RetentionRule(
            name="orphaned_graph_chunks",
            store=StoreKind.GRAPH,
            target="Chunk",
            scope=DeletionScope.ORPHAN,
            orphan=OrphanPredicate(relationship_type="BELONGS_TO"),
            description="Neo4j: Orphaned Chunk Nodes",
        ),
    ]


def select_rules(rules: Sequence[RetentionRule], names: Iterable[str] | None) -> list[RetentionRule]:
    """
    Keep only the named rules, preserving their original order.

    Raises:
        ValueError: If a name does not match any rule.
    """
    if not names:
        return list(rules)

    wanted = set(names)
    known = {rule.name for rule in rules}
    unknown = sorted(wanted - known)
    if unknown:
        raise ValueError(f"Unknown retention rule(s): {', '.join(unknown)} (known: {', '.join(sorted(known))})")
    return [rule for rule in rules if rule.name in wanted]
