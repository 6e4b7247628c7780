"""
Structured JSON logging configuration.

This module sets up package-wide JSON logging with:
- Consistent field names across all logs
- Store context (container, partition key, entity id)
- Operation name and store status code
- Version tokens for concurrency diagnostics

Logs are output to stdout in JSON format for easy parsing by
log aggregation systems.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Context fields promoted to top-level JSON keys when present on a record
CONTEXT_FIELDS = (
    "container",
    "partition_key",
    "entity_id",
    "operation",
    "status_code",
    "etag",
    "item_count",
)

# Attributes every LogRecord carries; these are never copied as extras
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName",
})


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as single-line JSON objects with consistent fields:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - message: Log message
    - logger: Logger name (module path)
    - container / partition_key / entity_id: Store addressing (if available)
    - operation: Repository operation name (if available)
    - status_code: Store status code (if available)
    - etag: Version token involved (if available)
    - item_count: Number of items in a batch or page (if available)
    - exception: Exception details (if exception occurred)

    Example output:
        {"timestamp": "2026-01-05T10:30:00.123456+00:00", "level": "WARNING",
         "message": "Concurrency conflict", "logger": "docrepo.repositories.document",
         "container": "notes", "entity_id": "6f1c...", "status_code": 412}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        # Any other custom fields passed through extra={...}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True
) -> None:
    """
    Configure package logging.

    Sets up:
    - Root logger with specified level
    - JSON formatter (if json_format=True)
    - StreamHandler to stdout
    - Removes previously installed root handlers

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatter (True) or simple formatter (False)

    Example:
        from docrepo.core.config import settings
        setup_logging(level=settings.log_level, json_format=settings.log_json)
    """
    root_logger = logging.getLogger()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get logger instance with given name.

    Args:
        name: Logger name (usually __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    container: Optional[str] = None,
    partition_key: Optional[str] = None,
    entity_id: Optional[Any] = None,
    operation: Optional[str] = None,
    status_code: Optional[int] = None,
    etag: Optional[str] = None,
    item_count: Optional[int] = None,
    **extra_fields: Any
) -> None:
    """
    Log message with structured store context fields.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        container: Container (collection) name
        partition_key: Partition key value
        entity_id: Document id
        operation: Repository operation name (create, update_many, ...)
        status_code: Store status code
        etag: Version token involved
        item_count: Number of documents involved
        **extra_fields: Additional fields to include

    Example:
        log_with_context(
            logger,
            "warning",
            "Concurrency conflict",
            container="notes",
            entity_id=note.id,
            operation="update",
            status_code=412,
        )
    """
    context = {
        "container": container,
        "partition_key": partition_key,
        "entity_id": str(entity_id) if entity_id is not None else None,
        "operation": operation,
        "status_code": status_code,
        "etag": etag,
        "item_count": item_count,
    }
    extra: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
    extra.update(extra_fields)

    log_method = getattr(logger, level.lower())
    log_method(message, extra=extra)
