"""
Custom exception hierarchy for audit-ops.

Follows a clear exception hierarchy:
- AuditOpsError: Base exception for all audit-ops errors
- ConfigurationError: Configuration and validation issues
- StoreError: Failures talking to a data store through its CLI
- BackupError: Snapshot creation failures
- RestoreError: Snapshot restoration failures
- LockError: Advisory store lock contention

Each exception includes:
- error_code: Machine-readable error identifier
- context: Additional structured data for debugging
- is_retryable: Whether the operation can be retried by the operator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization and monitoring."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "AUDIT_1001"
    CONFIG_MISSING = "AUDIT_1002"
    CONFIG_VALIDATION = "AUDIT_1003"
    CONFIG_PATH_UNUSABLE = "AUDIT_1004"

    # Store errors (2xxx)
    STORE_UNAVAILABLE = "AUDIT_2001"
    STORE_AUTH_FAILED = "AUDIT_2002"
    STORE_OBJECT_MISSING = "AUDIT_2003"
    STORE_COMMAND_FAILED = "AUDIT_2004"
    STORE_OUTPUT_INVALID = "AUDIT_2005"

    # Backup errors (3xxx)
    BACKUP_DUMP_FAILED = "AUDIT_3001"
    BACKUP_ARTIFACT_EXISTS = "AUDIT_3002"
    BACKUP_COMPRESSION_FAILED = "AUDIT_3003"
    BACKUP_DIRECTORY_UNUSABLE = "AUDIT_3004"

    # Restore errors (4xxx)
    RESTORE_ARTIFACT_NOT_FOUND = "AUDIT_4001"
    RESTORE_FORMAT_UNKNOWN = "AUDIT_4002"
    RESTORE_LOAD_FAILED = "AUDIT_4003"

    # Lock errors (5xxx)
    LOCK_HELD = "AUDIT_5001"
    LOCK_TIMEOUT = "AUDIT_5002"
    LOCK_UNUSABLE = "AUDIT_5003"

    # General errors (9xxx)
    UNKNOWN = "AUDIT_9999"


@dataclass
class AuditOpsError(Exception):
    """
    Base exception for all audit-ops errors.

    Provides structured error information for logging and monitoring.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        is_retryable: Whether the operation can be safely retried
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    is_retryable: bool = False
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r}, "
            f"is_retryable={self.is_retryable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(AuditOpsError):
    """Raised when configuration is invalid or missing."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def unusable_path(cls, field: str, path: str, cause: OSError) -> ConfigurationError:
        """Create error for a configured path that cannot be created or opened."""
        return cls(
            message=f"Cannot use {field} '{path}': {cause.strerror or cause}",
            error_code=ErrorCode.CONFIG_PATH_UNUSABLE,
            context={"field": field, "path": path},
            cause=cause,
        )


@dataclass
class StoreError(AuditOpsError):
    """Raised when a store CLI invocation fails."""

    error_code: ErrorCode = ErrorCode.STORE_COMMAND_FAILED

    @classmethod
    def command_failed(
        cls,
        store: str,
        command: str,
        returncode: int,
        stderr: str,
        cause: Exception | None = None,
    ) -> StoreError:
        """Create error for a tool that exited non-zero."""
        return cls(
            message=f"{command} failed against {store} (exit {returncode})",
            error_code=ErrorCode.STORE_COMMAND_FAILED,
            context={
                "store": store,
                "command": command,
                "returncode": returncode,
                "stderr": _tail(stderr),
            },
            cause=cause,
        )

    @classmethod
    def invalid_output(cls, store: str, command: str, output: str) -> StoreError:
        """Create error for output that could not be parsed."""
        return cls(
            message=f"Unexpected output from {command} against {store}",
            error_code=ErrorCode.STORE_OUTPUT_INVALID,
            context={"store": store, "command": command, "output": _tail(output)},
        )


@dataclass
class StoreUnavailableError(StoreError):
    """Raised when a store cannot be reached or rejects credentials."""

    error_code: ErrorCode = ErrorCode.STORE_UNAVAILABLE
    is_retryable: bool = True

    @classmethod
    def unreachable(cls, store: str, detail: str, cause: Exception | None = None) -> StoreUnavailableError:
        """Create error for a store that cannot be reached."""
        return cls(
            message=f"Store {store} is unavailable: {_tail(detail, 200)}",
            error_code=ErrorCode.STORE_UNAVAILABLE,
            context={"store": store},
            cause=cause,
        )

    @classmethod
    def auth_failed(cls, store: str, detail: str) -> StoreUnavailableError:
        """Create error for rejected credentials."""
        return cls(
            message=f"Authentication against {store} failed",
            error_code=ErrorCode.STORE_AUTH_FAILED,
            context={"store": store, "detail": _tail(detail, 200)},
            is_retryable=False,
        )


@dataclass
class MissingObjectError(StoreError):
    """Raised when the target table or collection does not exist yet."""

    error_code: ErrorCode = ErrorCode.STORE_OBJECT_MISSING

    @classmethod
    def for_target(cls, store: str, target: str) -> MissingObjectError:
        """Create error for a missing schema object."""
        return cls(
            message=f"{target} does not exist in {store}",
            error_code=ErrorCode.STORE_OBJECT_MISSING,
            context={"store": store, "target": target},
        )


@dataclass
class BackupError(AuditOpsError):
    """Raised when a backup invocation fails. No partial artifact is kept."""

    error_code: ErrorCode = ErrorCode.BACKUP_DUMP_FAILED
    is_retryable: bool = True

    @classmethod
    def dump_failed(cls, store: str, reason: str, cause: Exception | None = None) -> BackupError:
        """Create error for a failed dump."""
        return cls(
            message=f"Backup of {store} failed: {reason}",
            error_code=ErrorCode.BACKUP_DUMP_FAILED,
            context={"store": store},
            cause=cause,
        )

    @classmethod
    def artifact_exists(cls, path: str) -> BackupError:
        """Create error for a snapshot name collision."""
        return cls(
            message=f"Snapshot artifact already exists: {path}",
            error_code=ErrorCode.BACKUP_ARTIFACT_EXISTS,
            context={"path": path},
        )

    @classmethod
    def compression_failed(cls, path: str, cause: Exception | None = None) -> BackupError:
        """Create error for compression failure."""
        return cls(
            message=f"Failed to compress snapshot: {path}",
            error_code=ErrorCode.BACKUP_COMPRESSION_FAILED,
            context={"path": path},
            cause=cause,
        )

    @classmethod
    def directory_unusable(cls, path: str, cause: OSError) -> BackupError:
        """Create error for a backup directory that cannot be created."""
        return cls(
            message=f"Cannot use backup directory {path}: {cause.strerror or cause}",
            error_code=ErrorCode.BACKUP_DIRECTORY_UNUSABLE,
            context={"path": path},
            cause=cause,
        )


@dataclass
class RestoreError(AuditOpsError):
    """Raised when a restore fails. Target store state is undefined afterwards."""

    error_code: ErrorCode = ErrorCode.RESTORE_LOAD_FAILED

    @classmethod
    def artifact_not_found(cls, path: str) -> RestoreError:
        """Create error for a missing snapshot file."""
        return cls(
            message=f"Backup file not found: {path}",
            error_code=ErrorCode.RESTORE_ARTIFACT_NOT_FOUND,
            context={"path": path},
        )

    @classmethod
    def unknown_format(cls, path: str, store: str) -> RestoreError:
        """Create error for a file that does not look like a snapshot of this store."""
        return cls(
            message=f"Not a recognized {store} snapshot: {path}",
            error_code=ErrorCode.RESTORE_FORMAT_UNKNOWN,
            context={"path": path, "store": store},
        )

    @classmethod
    def load_failed(cls, store: str, path: str, cause: Exception | None = None) -> RestoreError:
        """Create error for a failed load."""
        return cls(
            message=f"Restore of {store} from {path} failed; store state is undefined",
            error_code=ErrorCode.RESTORE_LOAD_FAILED,
            context={"store": store, "path": path},
            cause=cause,
        )


@dataclass
class LockError(AuditOpsError):
    """Raised when another invocation holds the store lock."""

    error_code: ErrorCode = ErrorCode.LOCK_HELD
    is_retryable: bool = True

    @classmethod
    def held(cls, store: str, owner: dict[str, Any]) -> LockError:
        """Create error for a lock held by another process."""
        return cls(
            message=f"Store {store} is locked by another operation",
            error_code=ErrorCode.LOCK_HELD,
            context={"store": store, "owner": owner},
        )

    @classmethod
    def timeout(cls, store: str, timeout_seconds: float, owner: dict[str, Any]) -> LockError:
        """Create error for a lock wait that exceeded its deadline."""
        return cls(
            message=f"Timed out after {timeout_seconds}s waiting for lock on {store}",
            error_code=ErrorCode.LOCK_TIMEOUT,
            context={"store": store, "timeout_seconds": timeout_seconds, "owner": owner},
        )

    @classmethod
    def unusable(cls, store: str, path: str, cause: OSError) -> LockError:
        """Create error for a lock file that cannot be created or opened."""
        return cls(
            message=f"Cannot open lock file {path} for {store}: {cause.strerror or cause}",
            error_code=ErrorCode.LOCK_UNUSABLE,
            context={"store": store, "path": path},
            is_retryable=False,
            cause=cause,
        )


def _tail(text: str, limit: int = 500) -> str:
    """Keep the end of tool output, where the actual error usually is."""
    text = (text or "").strip()
    return text if len(text) <= limit else "..." + text[-limit:]
