"""
Configuration management for audit-ops.

Supports a YAML config file with environment variable fallbacks. Store
connection settings keep the variable names of the docker-compose stack
(POSTGRES_DB, MONGO_USER, MONGO_PASS, ...); everything else lives under
the AUDIT_OPS_ prefix with ``__`` as the nested delimiter.

The defaults only make sense for the local development stack.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from audit_ops.exceptions import ConfigurationError
from audit_ops.models import StoreKind


class PostgresConfig(BaseSettings):
    """Connection settings for the relational store."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_", extra="ignore")

    container: str = Field(default="audit-postgres", description="Container name")
    db: str = Field(default="audit_api", description="Database name")
    user: str = Field(default="audit_user", description="Database user")
    password: str = Field(default="", description="Password (empty uses in-container trust auth)")
    maintenance_db: str = Field(
        default="postgres", description="Database used for DROP/CREATE during restore"
    )


class MongoConfig(BaseSettings):
    """Connection settings for the document store."""

    model_config = SettingsConfigDict(env_prefix="MONGO_", extra="ignore", populate_by_name=True)

    container: str = Field(default="audit-mongodb", description="Container name")
    db: str = Field(default="audit_rag", description="Database name")
    user: str = Field(default="audit_user", description="Database user")
    password: str = Field(
        default="audit_pass",
        validation_alias=AliasChoices("MONGO_PASS", "MONGO_PASSWORD", "password"),
        description="Database password",
    )
    auth_db: str = Field(default="admin", description="Authentication database")


class Neo4jConfig(BaseSettings):
    """Connection settings for the graph store."""

    model_config = SettingsConfigDict(env_prefix="NEO4J_", extra="ignore")

    container: str = Field(default="audit-neo4j", description="Container name")
    db: str = Field(default="neo4j", description="Database name")
    user: str = Field(default="neo4j", description="Database user")
    password: str = Field(default="audit_pass", description="Database password")
    import_dir: str = Field(
        default="/var/lib/neo4j/import", description="Server import directory for JSON restores"
    )


class BackupConfig(BaseModel):
    """Configuration for snapshot artifacts."""

    root_directory: str = Field(default="./backups", description="Root of per-store backup dirs")
    max_backups: int = Field(default=30, ge=1, description="Snapshots kept per store")
    compression_level: int = Field(default=6, ge=1, le=9, description="gzip compression level")

    def directory_for(self, store: StoreKind) -> Path:
        """Default backup directory of a store."""
        return Path(self.root_directory) / store.engine


class RetentionConfig(BaseModel):
    """Age thresholds of the built-in retention rules, in days."""

    query_log_days: int = Field(default=365, ge=1)
    retrieval_event_days: int = Field(default=365, ge=1)
    checkpoint_days: int = Field(default=90, ge=1)
    ingestion_job_days: int = Field(default=180, ge=1)


class Neo4jMaintenanceConfig(BaseModel):
    """Pauses around stopping and starting the graph store for offline dumps."""

    stop_grace_seconds: float = Field(default=3.0, ge=0)
    start_wait_seconds: float = Field(default=5.0, ge=0)


class LockingConfig(BaseModel):
    """Configuration for the advisory per-store lock."""

    enabled: bool = Field(default=True, description="Take a store lock before destructive work")
    directory: str = Field(default="./.locks", description="Directory holding lock files")
    timeout_seconds: float = Field(
        default=0.0, ge=0, description="How long to wait for a held lock (0 fails immediately)"
    )


class RuntimeConfig(BaseModel):
    """Configuration for the container runtime."""

    docker_bin: str = Field(default="docker", description="Container runtime executable")
    command_timeout_seconds: float | None = Field(
        default=None, description="Per-command timeout (None waits for the tool)"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="plain", description="Console log format (json, plain)")
    directory: str = Field(default="logs", description="Directory for the JSONL log file")
    file_enabled: bool = Field(default=True, description="Write the rotating JSONL log file")
    file_name: str = Field(default="audit-ops.jsonl", description="JSONL log file name")
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024, description="Rotate after this many bytes")
    backup_count: int = Field(default=5, ge=0, description="Rotated files to keep")


class Config(BaseSettings):
    """Main configuration for audit-ops."""

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_OPS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    mongodb: MongoConfig = Field(default_factory=MongoConfig)
    neo4j: Neo4jConfig = Field(default_factory=Neo4jConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    neo4j_maintenance: Neo4jMaintenanceConfig = Field(default_factory=Neo4jMaintenanceConfig)
    locking: LockingConfig = Field(default_factory=LockingConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """
        Build a configuration from a plain mapping.

        Store sections are constructed through their own settings classes
        so that keys missing from the mapping still fall back to the
        environment.
        """
        data = dict(data)
        store_sections = {
            "postgres": PostgresConfig,
            "mongodb": MongoConfig,
            "neo4j": Neo4jConfig,
        }
        try:
            for key, settings_cls in store_sections.items():
                section = data.pop(key, None) or {}
                if not isinstance(section, dict):
                    raise ConfigurationError.validation_failed(key, section, "expected a mapping")
                data[key] = settings_cls(**section)
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                message=f"Invalid configuration: {e.error_count()} validation error(s)",
                context={"errors": [err["loc"] for err in e.errors()]},
                cause=e,
            ) from e

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError.missing_file(str(path))

        with path.open() as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError.validation_failed("root", type(data).__name__, "expected a mapping")

        return cls.from_dict(data)

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """
        Load configuration with precedence:
        1. Config file
        2. Environment variables
        3. Defaults (lowest)

        An explicitly requested file must exist; the well-known locations
        are only used when present.
        """
        if config_path is None:
            config_path = os.getenv("AUDIT_OPS_CONFIG")

        if config_path is not None:
            return cls.from_yaml(config_path)

        for candidate in [
            "audit-ops.yaml",
            "audit-ops.yml",
            "config/audit-ops.yaml",
        ]:
            if Path(candidate).exists():
                return cls.from_yaml(candidate)

        return cls()

    def store_settings(self, store: StoreKind) -> PostgresConfig | MongoConfig | Neo4jConfig:
        """Connection settings of one store."""
        return {
            StoreKind.RELATIONAL: self.postgres,
            StoreKind.DOCUMENT: self.mongodb,
            StoreKind.GRAPH: self.neo4j,
        }[store]

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config | None) -> None:
    """Set (or reset with None) the global configuration instance."""
    global _config
    _config = config
