"""
Log output for the update orchestrator.

The orchestrator reports through its logs rather than its exit status:
drift found, registry unreachable, countdown extended and termination
requested are all logged with structured fields. Containers get one JSON
object per line; interactive runs get the ``[AUTO-UPDATE]`` text format the
deployment scripts have always printed.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from srcds_autoupdate.config import LoggingConfig

ROOT_LOGGER_NAME = "srcds_autoupdate"

DEFAULT_LOG_FORMAT = "%(asctime)s [AUTO-UPDATE] %(levelname)s %(name)s: %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra`
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


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_KEYS and value is not None
    }


class JSONFormatter(logging.Formatter):
    """
    Render each record as a single-line JSON object.

    The object always has ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``
    and ``message``; an ``exception`` traceback when one is attached; and every
    non-None field passed through ``extra`` (app_id, remote_build, ...).
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_extra_fields(record))

        # Values json cannot encode (paths, enums) fall back to str()
        return json.dumps(entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = True,
) -> logging.Logger:
    """
    Point the package logger at stdout.

    Calling this again replaces the previous handler. The package logger does
    not propagate, so host applications that configure the root logger do not
    see every line twice.

    Args:
        config: Logging section of the loaded configuration. Takes precedence
            over the keyword arguments when given.
        level: Level name, case-insensitive.
        json_format: JSON lines when True, the text format otherwise.
        log_to_stdout: When False no handler is installed at all.

    Returns:
        The ``srcds_autoupdate`` logger.
    """
    if config is not None:
        level = config.level
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    logger.propagate = False

    if not log_to_stdout:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(
        JSONFormatter() if json_format else logging.Formatter(DEFAULT_LOG_FORMAT)
    )
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package root, prefixing bare names."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
