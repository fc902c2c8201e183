# coinproxy/logging_conf.py
from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from logging.config import dictConfig
from typing import Any

# Structured fields callers attach with `extra=`; copied to the top level of each line.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "cache",
    "duration_s",
    "client",
    "query",
    "assets",
    "status_code",
    "attempt",
)

# logger -> level; None means the configured level
_LOGGERS: dict[str, str | None] = {
    "uvicorn": None,
    "uvicorn.error": None,
    # request lines come from the timing middleware instead
    "uvicorn.access": "WARNING",
    "fastapi": None,
    # one line per upstream call is already logged by coinproxy.upstream
    "httpx": "WARNING",
    "coinproxy": None,
    "request": None,
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message, UTC time, plus any context fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            val = getattr(record, field, None)
            if val is not None:
                payload[field] = val
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_config(level: str, fmt: str = "json") -> dict[str, Any]:
    """dictConfig for the proxy's loggers; `fmt` is "json" or "plain"."""
    if fmt not in ("json", "plain"):
        raise ValueError(f"LOG_FORMAT must be 'json' or 'plain', got {fmt!r}")
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": fmt,
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            name: {"level": override or level, "handlers": ["console"], "propagate": False}
            for name, override in _LOGGERS.items()
        },
    }


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Apply build_config using LOG_LEVEL / LOG_FORMAT when not given explicitly."""
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = (fmt or os.getenv("LOG_FORMAT", "json")).lower()
    dictConfig(build_config(log_level, log_format))
