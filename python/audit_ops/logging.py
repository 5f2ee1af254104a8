"""
Structured logging for audit-ops.

Cron runs of ``audit-retention`` and ``audit-backup`` are diagnosed from the
JSONL file afterwards, so every event is a flat JSON object with the run's
bound context (``run_id``, ``store``, ``operation``). Human-facing log lines
go to stderr; stdout belongs to the command summary.

Usage:
    setup_logging()
    logger = get_logger(__name__)
    with with_context(run_id="20240101T020000", store="postgres"):
        logger.info("backup_started")
"""

from __future__ import annotations

import logging
import os
import socket
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from audit_ops.config import get_config
from audit_ops.exceptions import ConfigurationError

if TYPE_CHECKING:
    from structlog.types import Processor

    from audit_ops.config import LoggingConfig

SERVICE_NAME = "audit-ops"
MASK = "***"
SECRET_KEY_MARKERS = ("password", "secret", "token")


def _stamp(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Add UTC timestamp, service, host and pid."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("host", socket.gethostname())
    event_dict.setdefault("pid", os.getpid())
    return event_dict


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SECRET_KEY_MARKERS)


def _mask_secrets(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential-looking fields, including inside an error's ``context``."""
    for key in list(event_dict):
        if _is_secret(key) and event_dict[key]:
            event_dict[key] = MASK

    context = event_dict.get("context")
    if isinstance(context, dict):
        event_dict["context"] = {k: (MASK if _is_secret(k) and v else v) for k, v in context.items()}
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        _stamp,
        _mask_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _file_handler(settings: LoggingConfig, level: int) -> tuple[logging.Handler, Path]:
    path = log_file_path(settings)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(path),
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        raise ConfigurationError.unusable_path("logging.directory", str(path.parent), e) from e
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.dict_tracebacks,
                structlog.processors.JSONRenderer(),
            ],
        )
    )
    handler.setLevel(level)
    return handler, path


def _console_handler(fmt: str, level: int) -> logging.Handler:
    renderers: list[Processor]
    if fmt.lower() == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=False, exception_formatter=structlog.dev.plain_traceback)]

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        )
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    level: str | None = None,
    *,
    settings: LoggingConfig | None = None,
    console: bool = True,
) -> Path | None:
    """
    Configure structlog over stdlib logging for one process.

    Args:
        level: Overrides ``settings.level`` (the CLI passes DEBUG for ``-v``).
        settings: Logging section to use. Defaults to the active config's.
        console: Attach the stderr handler.

    Returns:
        Path of the JSONL file, or None when file logging is disabled.

    Raises:
        ConfigurationError: If the log directory or file cannot be opened.
    """
    settings = settings or get_config().logging
    log_level = getattr(logging, (level or settings.level).upper(), logging.INFO)

    structlog.configure(
        processors=[*_shared_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []
    log_path: Path | None = None
    if settings.file_enabled:
        file_handler, log_path = _file_handler(settings, log_level)
        handlers.append(file_handler)
    if console:
        handlers.append(_console_handler(settings.format, log_level))

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)
    return log_path


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("sweep_started", dry_run=True)
        logger.error("backup_failed", store="postgres", error_code="AUDIT_3001")
    """
    return structlog.get_logger(name)


@contextmanager
def with_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


def log_file_path(settings: LoggingConfig) -> Path:
    return Path(settings.directory) / settings.file_name
