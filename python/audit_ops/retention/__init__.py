"""
Retention enforcement across the relational, document and graph stores.

Usage:
    from audit_ops.retention import RetentionSweeper, default_rules
    sweeper = RetentionSweeper(create_stores(config), locks=LockManager(config.locking))
    summary = sweeper.run(default_rules(config.retention), dry_run=True)
"""

from audit_ops.retention.rules import default_rules, select_rules
from audit_ops.retention.sweeper import RetentionSweeper, SweepObserver, utc_now

__all__ = [
    "RetentionSweeper",
    "SweepObserver",
    "default_rules",
    "select_rules",
    "utc_now",
]
