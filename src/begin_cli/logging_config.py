"""Logging configuration for begin-cli.

Two output formats, both on stderr so stdout stays clean for results:
  - **human** -- rich-rendered, concise
  - **json**  -- newline-delimited JSON for log aggregators
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "begin_cli"


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


def setup_logging(level: str = "WARNING", fmt: str = "human") -> logging.Logger:
    """Configure the ``begin_cli`` logger.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    fmt : str
        ``"human"`` for rich console output, ``"json"`` for
        newline-delimited JSON.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    logger.propagate = False

    # Remove any existing handlers (avoid duplicates on re-entry)
    logger.handlers.clear()

    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(_JSONFormatter())
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    return logger
