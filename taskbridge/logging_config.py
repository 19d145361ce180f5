"""Logging setup for the bridge.

LOG_FORMAT=json writes one JSON object per line; anything else writes plain
text. Records logged with ``extra={"session_id": ..., "thread_id": ...}``
carry those ids in both formats, so one session's monitor can be followed
through the log.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Record attributes copied from `extra` into the output
CONTEXT_FIELDS = ("session_id", "thread_id")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Libraries that log every request at INFO
QUIET_LOGGERS = ("aiohttp", "aiosqlite")


def record_context(record: logging.LogRecord) -> dict[str, str]:
    return {
        field: str(getattr(record, field))
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class ContextTextFormatter(logging.Formatter):
    """Plain text with a trailing ``session=... thread=...`` tag when present."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT, datefmt=TEXT_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        tag = " ".join(f"{k.removesuffix('_id')}={v}" for k, v in context.items())
        first, sep, rest = line.partition("\n")
        return f"{first} ({tag}){sep}{rest}"


def setup_logging() -> None:
    """Configure the root logger from LOG_FORMAT and LOG_LEVEL."""
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    if os.environ.get("LOG_FORMAT", "text") == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ContextTextFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
