"""Logging setup for the connector.

Every module logs through ``logging.getLogger(__name__)`` below the
``esbridge`` logger; ``init_logging`` attaches a single stream handler to it.

Environment variables: ESBRIDGE_LOG_LEVEL (default INFO), ESBRIDGE_LOG_JSON
(``true`` switches to one JSON object per line).
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

LOGGER_NAME = "esbridge"


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when ESBRIDGE_LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


def init_logging(level: Optional[str] = None, log_json: Optional[bool] = None) -> logging.Logger:
    """Configure the ``esbridge`` logger; calling it again replaces the handler."""

    if level is None:
        level = os.getenv("ESBRIDGE_LOG_LEVEL", "INFO")
    if log_json is None:
        log_json = os.getenv("ESBRIDGE_LOG_JSON", "false").lower() == "true"

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_esbridge", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(_get_formatter(log_json))
    handler._esbridge = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger
