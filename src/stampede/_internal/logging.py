"""Logging setup for Stampede."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_PLAIN_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Keys passed through ``extra=`` that the JSON formatter copies verbatim.
_EXTRA_KEYS = ("user_id", "stage", "active_users")


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message.

    Engine context passed via ``extra=`` (user id, stage index, active
    user count) is included when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure the ``stampede`` logger namespace.

    Installs a single handler on the current ``sys.stderr``. Calling it
    again replaces that handler rather than adding another, so repeated
    runs in one process do not duplicate output. The replaced handler is
    dropped without a flush: its stream may already be closed.

    Args:
        level: Logging level (e.g., ``logging.DEBUG``). Defaults to INFO.
        json_format: Emit one-line JSON records instead of plain text.

    Returns:
        The configured ``stampede`` logger.
    """
    logger = logging.getLogger("stampede")
    logger.setLevel(level)

    formatter: logging.Formatter
    if json_format:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(_PLAIN_FORMAT, datefmt=_DATE_FORMAT)

    for stale in list(logger.handlers):
        logger.removeHandler(stale)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger, e.g. ``get_logger("engine.user")``.

    Args:
        name: Dotted suffix appended to ``stampede.``.

    Returns:
        The ``stampede.<name>`` logger.
    """
    return logging.getLogger(f"stampede.{name}")
