"""
Structured logging configuration.

- Development: human-readable colored format, workflow context appended
- Production: one JSON object per line
- Log level: controlled via LOG_LEVEL env variable

Workflow services attach their context with ``extra=``:

    logger.info("Water object %s approved", obj.id,
                extra={"action": "approve", "water_object_id": obj.id,
                       "canonical_id": obj.canonical_id, "user_id": admin_id})

``RequestContextFilter`` stamps every record emitted while a request is being
served with that request's ``request_id`` (set by the timing middleware), so
service log lines can be joined with the access log line.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Request attributes (timing middleware) and workflow attributes (lifecycle service)
REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id", "user_id")
WORKFLOW_KEYS = ("action", "water_object_id", "canonical_id", "status_from", "status_to")


class RequestContextFilter(logging.Filter):
    """Copy ``g.request_id`` onto records that don't carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": f"{record.module}:{record.lineno}",
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in REQUEST_KEYS + WORKFLOW_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored one-liner for development; workflow context as ``key=value`` suffix."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        context = " ".join(
            f"{key}={getattr(record, key)}"
            for key in WORKFLOW_KEYS
            if getattr(record, key, None) is not None
        )
        if context:
            line += f" ({context})"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one root stream handler on stderr.

    JSON unless the app runs in debug or testing mode.  LOG_LEVEL defaults
    to INFO in production, DEBUG otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
