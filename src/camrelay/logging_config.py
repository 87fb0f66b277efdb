"""Structured logging with credential redaction.

Text lines look like: timestamp | logger | level | message
Switch to NDJSON with: LOG_FORMAT=json

Security:
    Source URLs routinely embed camera credentials. Every formatted message,
    traceback and string extra passes through ``redact_credentials`` so
    ``scheme://user:pass@`` never reaches the log sink, whatever the scheme.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Final

from .utils.strings import redact_credentials

# ============================================================================
# Constants
# ============================================================================

VALID_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
VALID_FORMATS: Final[frozenset[str]] = frozenset({"text", "json"})

THIRD_PARTY_LOGGERS: Final[tuple[str, ...]] = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")
"""Loggers rerouted through the root handler."""

STANDARD_LOG_ATTRIBUTES: Final[frozenset[str]] = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName",
    "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName"
})
"""LogRecord attributes that are not user extras."""


def _utc_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")


# ============================================================================
# Formatters
# ============================================================================

class TextFormatter(logging.Formatter):
    """Aligned human-readable lines.

    Example:
        2025-10-28T05:10:23.456+00:00 | camrelay.services.sessions         | INFO     | Stream 3f1c... ready in 1.52s
    """

    LOGGER_WIDTH = 36

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        if len(name) > self.LOGGER_WIDTH:
            name = "..." + name[-(self.LOGGER_WIDTH - 3):]

        line = (
            f"{_utc_timestamp(record)} | {name.ljust(self.LOGGER_WIDTH)} | "
            f"{record.levelname.ljust(8)} | {redact_credentials(record.getMessage())}"
        )
        if record.exc_info:
            line += "\n" + redact_credentials(self.formatException(record.exc_info))
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log shippers.

    Extras passed via ``logger.info(..., extra={...})`` are emitted with an
    ``extra_`` prefix.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_credentials(record.getMessage()),
        }

        if record.exc_info:
            entry["exception"] = redact_credentials(self.formatException(record.exc_info))
        if record.stack_info:
            entry["stack_info"] = redact_credentials(record.stack_info)

        for key, value in record.__dict__.items():
            if key in STANDARD_LOG_ATTRIBUTES:
                continue
            entry[f"extra_{key}"] = redact_credentials(value) if isinstance(value, str) else value

        return json.dumps(entry, ensure_ascii=False, default=str)


# ============================================================================
# Configuration
# ============================================================================

def get_log_level() -> int:
    """LOG_LEVEL from the environment (INFO when unset or invalid)."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    if level not in VALID_LEVELS:
        logging.warning(f"Invalid LOG_LEVEL '{level}', using INFO")
        return logging.INFO
    return getattr(logging, level)


def get_log_format() -> str:
    """LOG_FORMAT from the environment (text when unset or invalid)."""
    fmt = os.getenv("LOG_FORMAT", "text").lower()
    if fmt not in VALID_FORMATS:
        logging.warning(f"Invalid LOG_FORMAT '{fmt}', using text")
        return "text"
    return fmt


def configure_logging() -> None:
    """Install a single stdout handler on the root logger.

    Environment:
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
        LOG_FORMAT: text, json (default: text)
    """
    level = get_log_level()
    fmt = get_log_format()

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    root.addHandler(console)

    for name in THIRD_PARTY_LOGGERS:
        third_party = logging.getLogger(name)
        third_party.setLevel(level)
        third_party.handlers.clear()
        third_party.propagate = True

    root.info(f"Logging: level={logging.getLevelName(level)}, format={fmt}")
