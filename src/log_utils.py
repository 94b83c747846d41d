"""
Logging utilities for the Portainer updater.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

PRETTY_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Renders each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: str = "INFO", pretty: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: One of DEBUG, INFO, WARN, ERROR
        pretty: Human readable lines instead of JSON
        log_file: Optional path to a log file

    Returns:
        Logger instance
    """
    formatter = logging.Formatter(PRETTY_FORMAT) if pretty else JsonFormatter()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=LEVELS.get(level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )

    return logging.getLogger(__name__)
