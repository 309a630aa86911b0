"""
Structured logging utilities.

Cache events (remote fallbacks, cross-process updates, push failures) carry
their key and operation as ``extra`` fields. ``configure_logging`` installs
a handler on the package logger that renders those fields either as
single-line JSON objects for log collectors or as ``key=value`` suffixes
on a plain text line.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from .config import KVSyncConfig

PACKAGE_LOGGER = "shaadi_kv"

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Attributes every LogRecord has; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra`` fields attached to a record."""
    return {
        name: value
        for name, value in record.__dict__.items()
        if name not in _RECORD_ATTRS and not name.startswith("_")
    }


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    Render records as single-line JSON objects.

    Fixed fields are ``timestamp`` (UTC, ISO 8601, taken from the record's
    creation time), ``level``, ``logger`` and ``message``; ``exception`` is
    added when the record carries exc_info. Context passed via ``extra``
    becomes top-level fields, stringified if not JSON serializable.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for name, value in context_fields(record).items():
            log_obj.setdefault(name, _jsonable(value))

        return json.dumps(log_obj, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain text lines with the ``extra`` context appended as key=value pairs."""

    def __init__(self, fmt: str = TEXT_FORMAT) -> None:
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = context_fields(record)
        if not context:
            return line
        pairs = " ".join(f"{name}={value!r}" for name, value in sorted(context.items()))
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def configure_logging(config: KVSyncConfig, stream: TextIO | None = None) -> logging.Logger:
    """
    Configure the package logger from ``log_format`` and ``log_level``.

    An unset ``log_format`` renders text.

    Args:
        config: Engine configuration
        stream: Destination (default: stdout)

    Returns:
        The package logger
    """
    level = logging.getLevelName(config.log_level.upper())
    if config.log_format == "json":
        formatter: logging.Formatter = StructuredJsonFormatter()
    else:
        formatter = ContextTextFormatter()
    return _install_handler(formatter, level, PACKAGE_LOGGER, stream)


def _install_handler(
    formatter: logging.Formatter,
    level: int,
    logger_name: str | None,
    stream: TextIO | None,
) -> logging.Logger:
    logger = logging.getLogger(logger_name)

    # Repeated configuration replaces the previous handler
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_kv_logger(name: str) -> logging.Logger:
    """Logger named ``shaadi_kv.<name>`` for a cache component."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


class KVLoggerAdapter(logging.LoggerAdapter):
    """Adds fixed context (e.g. the engine's origin id) to every record.

    Per-call ``extra`` values win over the fixed context.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs
