"""
audit-ops - data lifecycle operations for the Audit RAG platform

This package orchestrates the platform's containerized data stores:
- Retention sweeps over PostgreSQL, MongoDB and Neo4j with dry-run support
- Compressed, timestamped snapshots with a keep-N-most-recent cap
- Confirmed restores from those snapshots
- Advisory per-store locking between sweeps, backups and restores
"""

__version__ = "0.1.0"
__all__ = [
    "backup",
    "cli",
    "config",
    "exceptions",
    "locking",
    "logging",
    "models",
    "retention",
    "runner",
    "stores",
]
