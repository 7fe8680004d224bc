"""
Structured JSON logging configuration.

This module sets up JSON logging for the repository layer with:
- Consistent field names across all logs
- Entity and operation tracking for data-access calls
- Affected-row counts for save/commit
- Timestamp, level, message, logger name

Logs are output to stdout in JSON format for easy parsing by
log aggregation systems.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from repository_pattern.core.config import settings


# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "taskName", "exc_info", "exc_text", "stack_info",
})


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as single-line JSON objects with consistent fields:
    - timestamp: ISO 8601 format with microseconds (UTC)
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - message: Log message
    - logger: Logger name (module path)
    - entity: Mapped class name (if available)
    - operation: Repository verb, e.g. "add", "save", "commit" (if available)
    - count: Number of entities passed to a bulk verb (if available)
    - affected: Rows written by save/commit (if available)
    - request_id: Correlation ID (if available)
    - exception: Exception details (if exception occurred)
    - extra: Any additional fields from log record

    Example output:
        {"timestamp": "2025-11-24T10:30:00.123456+00:00", "level": "DEBUG",
         "message": "Saved pending changes", "logger": "repository_pattern.repositories.base",
         "entity": "City", "operation": "save", "affected": 3}
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON string.

        Args:
            record: LogRecord to format

        Returns:
            JSON string representation of log record
        """
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

        # Custom fields passed via logger.debug("msg", extra={...})
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in log_data:
                continue
            if value is not None:
                log_data[key] = value

        return json.dumps(log_data, default=str)


PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty dependencies kept at WARNING regardless of the root level
QUIET_LOGGERS = ("aiosqlite", "asyncio")


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """
    Install a single stream handler on the root logger.

    Level and format default to settings.log_level and settings.log_json.
    Any handlers already on the root logger are replaced, so calling this
    twice does not duplicate output.

    Args:
        level: Logging level name, case-insensitive
        json_format: JSONFormatter (True) or a plain one-line format (False)
        stream: Where to write; stdout when omitted

    Returns:
        The installed handler

    Note:
        Applications call this once at startup. The repositories only ever
        log through get_logger() and never configure handlers themselves.
    """
    level = (level or settings.log_level).upper()
    json_format = settings.log_json if json_format is None else json_format
    log_level = getattr(logging, level, logging.INFO)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        JSONFormatter() if json_format
        else logging.Formatter(fmt=PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # SQL echo is opt-in through DATABASE_ECHO
    if not settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler


def get_logger(name: str) -> logging.Logger:
    """
    Get logger instance with given name.

    Args:
        name: Logger name (usually __name__ of the module)

    Returns:
        Logger instance

    Example:
        logger = get_logger(__name__)
        logger.debug("Marked for insert", extra={"entity": "City", "operation": "add"})
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    entity: Optional[str] = None,
    operation: Optional[str] = None,
    count: Optional[int] = None,
    affected: Optional[int] = None,
    request_id: Optional[str] = None,
    **extra_fields: Any
) -> None:
    """
    Log message with structured repository context fields.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        entity: Mapped class name
        operation: Repository verb
        count: Number of entities involved in a bulk verb
        affected: Rows written by save/commit
        request_id: Request correlation ID
        **extra_fields: Additional fields to include

    Example:
        log_with_context(
            logger,
            "debug",
            "Marked for insert",
            entity="City",
            operation="add_many",
            count=3,
        )
    """
    extra: Dict[str, Any] = {}

    if entity is not None:
        extra["entity"] = entity
    if operation is not None:
        extra["operation"] = operation
    if count is not None:
        extra["count"] = count
    if affected is not None:
        extra["affected"] = affected
    if request_id is not None:
        extra["request_id"] = request_id

    extra.update(extra_fields)

    log_method = getattr(logger, level.lower())
    log_method(message, extra=extra)
