"""Structured Logging: JSON formatter and setup for production observability.

Invariants:
    - All logs include timestamp, level, logger name and message
    - Request extras (request_id, method, path, status...) surfaced when present
    - JSON format in production, human-readable in development
    - Both formats carry the same request extras; text appends them as key=value

Design Decisions:
    - JSONFormatter on the stdlib logging module: zero dependencies, full control
    - setup_logging called once on startup via the FastAPI lifespan; repeated
      calls replace the handler instead of stacking duplicates
"""

import json
import logging
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "request_id", "method", "path", "status", "error_kind",
    "duration_ms", "handler",
)

_HANDLER_NAME = "restcore"


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """One readable line per record, request extras appended as key=value."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = " ".join(
            f"{key}={record.__dict__[key]}" for key in EXTRA_FIELDS
            if record.__dict__.get(key) is not None
        )
        if not extras:
            return line
        # Keep a traceback below the extras
        head, sep, rest = line.partition("\n")
        return f"{head} [{extras}]{sep}{rest}"


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure logging for the application."""
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())
    for existing in list(logging.root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            logging.root.removeHandler(existing)
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
