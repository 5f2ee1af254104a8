"""
Snapshot management for the relational, document and graph stores.

Usage:
    from audit_ops.backup import BackupManager
    manager = BackupManager(create_store(StoreKind.GRAPH, config), config.backup)
    for artifact in manager.list():
        print(artifact.path, artifact.human_size)
"""

from audit_ops.backup.manager import CONFIRM_ANSWERS, BackupManager

__all__ = [
    "CONFIRM_ANSWERS",
    "BackupManager",
]
