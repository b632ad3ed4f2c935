"""Logging configuration utilities for spriteforge.

Provides:
- Text or structured (JSON lines) output to stderr or a file
- Suppression of chatty third-party loggers (HTTP clients, Pillow)
- Context-aware loggers via LoggerAdapter
"""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
import sys
from typing import Any

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came from `extra` or an adapter.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "asyncio", "PIL")


class StructuredJSONFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record.

    Shape::

        {
            "level": "INFO",
            "message": "...",
            "timestamp": "2026-01-29T12:00:00.000000+00:00",
            "context": {"logger_name": "...", "function": "...", "line": 42, ...extra...}
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        context: dict[str, Any] = {
            "logger_name": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            context["error_type"] = exc_type.__name__ if exc_type else None
            context["error_message"] = str(exc_value) if exc_value else None
            context["stack_trace"] = record.exc_text or self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                context[key] = value

        entry = {
            "level": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "context": context,
        }
        return json.dumps(entry, default=str)


def _suppress_noisy_loggers() -> None:
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(
    level: str = "INFO",
    format_string: str | None = None,
    filename: str | None = None,
    structured: bool = False,
) -> None:
    """Configure application-wide logging.

    Safe to call repeatedly; each call replaces the previous root handlers.
    Logs go to stderr by default so command output on stdout stays clean.

    Args:
        level: Logging level name, case-insensitive.
        format_string: Text format (ignored when structured).
        filename: Log file path. If None, logs to stderr.
        structured: Emit JSON lines via StructuredJSONFormatter.

    Examples:
        >>> configure_logging(level="DEBUG")
        >>> configure_logging(level="INFO", structured=True, filename="spriteforge.jsonl")
    """
    handler: logging.Handler
    if filename:
        handler = logging.FileHandler(filename)
    else:
        handler = logging.StreamHandler(sys.stderr)

    formatter: logging.Formatter
    if structured:
        formatter = StructuredJSONFormatter()
    else:
        formatter = logging.Formatter(format_string or DEFAULT_FORMAT)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )

    _suppress_noisy_loggers()


def get_logger(name: str, **context: Any) -> logging.Logger | logging.LoggerAdapter:
    """Get a logger, wrapped in a LoggerAdapter when context is given.

    Example:
        >>> log = get_logger(__name__, job_id="abc123")
        >>> log.info("Started")  # record carries job_id
    """
    logger = logging.getLogger(name)
    if context:
        return logging.LoggerAdapter(logger, context)
    return logger
