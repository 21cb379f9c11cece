"""
Structured logging for the Time MCP Server.

Log records are emitted as one JSON object per line on stderr. stdout is
reserved for protocol messages when the stdio transport is active, so no
handler installed here ever writes to it.

Features:
- JSON-formatted log output for machine-readable logs
- Fields passed through ``extra`` are merged into the JSON object
- Plain-text fallback format for interactive debugging
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from mcp_time.config import LoggingConfig

ROOT_LOGGER_NAME = "mcp_time"

# Default log format for the non-JSON fallback
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came from ``extra``.
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each record becomes an object with ``timestamp`` (ISO 8601, UTC),
    ``level``, ``logger`` and ``message``, plus ``exception`` when exc_info
    is set and any extra fields attached to the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the ``mcp_time`` logger.

    Args:
        config: Optional LoggingConfig. If provided, overrides ``level`` and
            ``json_format``.
        level: Default log level if no config is provided.
        json_format: Whether to use JSON formatting (default: True).
        stream: Output stream. Defaults to ``sys.stderr``.

    Returns:
        The package root logger.

    Example:
        >>> from mcp_time.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Server started", extra={"port": 8080})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_format
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(getattr(logging, log_level, logging.INFO))
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module under the ``mcp_time`` namespace.

    Args:
        name: Logger name, typically ``__name__``. The ``mcp_time.`` prefix is
            added when missing.

    Returns:
        A logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
