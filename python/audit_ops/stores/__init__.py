"""
Store adapters for the relational, document and graph databases.

Each adapter implements the DataStore capability interface (count,
delete, dump, load) on top of a ContainerClient.

Usage:
    from audit_ops.stores import create_store
    store = create_store(StoreKind.DOCUMENT, config)
    store.count(rule, cutoff)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from audit_ops.models import StoreKind
from audit_ops.runner import CommandRunner, ContainerClient
from audit_ops.stores.base import DataStore
from audit_ops.stores.mongodb import MongoStore
from audit_ops.stores.neo4j import Neo4jStore
from audit_ops.stores.postgres import PostgresStore

if TYPE_CHECKING:
    from audit_ops.config import Config

__all__ = [
    "DataStore",
    "MongoStore",
    "Neo4jStore",
    "PostgresStore",
    "create_store",
    "create_stores",
]


def create_store(
    kind: StoreKind,
    config: Config,
    runner: CommandRunner | None = None,
) -> DataStore:
    """
    Build the adapter for one store from configuration.

    Args:
        kind: Store to build.
        config: Application configuration.
        runner: Command runner to use. Defaults to a new runner honoring
            ``runtime.command_timeout_seconds``.
    """
    settings = config.store_settings(kind)
    if runner is None:
        runner = CommandRunner(timeout_seconds=config.runtime.command_timeout_seconds)
    if settings.password and settings.password not in runner.secrets:
        runner.secrets.append(settings.password)

    client = ContainerClient(
        container=settings.container,
        store=kind.engine,
        runner=runner,
        docker_bin=config.runtime.docker_bin,
    )
    level = config.backup.compression_level

    if kind == StoreKind.RELATIONAL:
        return PostgresStore(client, config.postgres, compression_level=level)
    if kind == StoreKind.DOCUMENT:
        return MongoStore(client, config.mongodb, compression_level=level)
    return Neo4jStore(client, config.neo4j, config.neo4j_maintenance, compression_level=level)


def create_stores(config: Config, runner: CommandRunner | None = None) -> dict[StoreKind, DataStore]:
    """Build adapters for all three stores, sharing one runner."""
    if runner is None:
        runner = CommandRunner(timeout_seconds=config.runtime.command_timeout_seconds)
    return {kind: create_store(kind, config, runner) for kind in StoreKind}
