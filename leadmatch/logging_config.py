"""Centralized logging configuration.

Console-only (Lambda and containers collect stdout). The JSON format emits one
object per record and carries any ``extra=`` context fields alongside the
message, so timings and ids stay queryable.
"""
from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def setup_logging(level: str = "INFO", format_style: str = "json") -> None:
    """Setup logging for the service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_style: 'json' or 'text'
    """
    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "text": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json" if format_style == "json" else "text",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "": {"level": level, "handlers": ["console"]},
            # SDK request logs are noisy and may echo payloads
            "httpx": {"level": "WARNING"},
            "openai": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)
