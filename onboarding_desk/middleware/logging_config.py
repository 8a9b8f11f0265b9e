"""
Log output for the onboarding desk.

Two line formats share one root handler on stderr:

    json      one object per line; workflow identifiers passed through
              ``extra=`` (onboarding_id, checklist_instance_id, ...) become
              top-level keys so a decision can be traced across services.
    readable  ``HH:MM:SS LEVEL logger: message [12ms]`` with the level
              tinted for a terminal.

LOG_FORMAT picks one explicitly; otherwise deployed apps (not DEBUG, not
TESTING) log JSON. LOG_LEVEL defaults to INFO when deployed, DEBUG locally.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Workflow and request identifiers lifted from ``extra=`` onto JSON lines.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "registration_id",
    "onboarding_id",
    "account_id",
    "checklist_instance_id",
    "checklist_type",
    "version_number",
    "reviewer_id",
    "actor_id",
)

LOG_FORMATS = ("json", "readable")

# Libraries whose INFO output drowns the workflow lines.
QUIET_LOGGERS = ("sqlalchemy.engine", "urllib3", "werkzeug")


def _traceback(formatter: logging.Formatter, record: logging.LogRecord) -> str | None:
    if record.exc_info and record.exc_info[0] is not None:
        return formatter.formatException(record.exc_info)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own UTC time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        trace = _traceback(self, record)
        if trace:
            entry["exception"] = trace
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Terminal format used by the dev server and the test suite."""

    LEVEL_TINT = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    PLAIN = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tint = self.LEVEL_TINT.get(record.levelno, "")
        line = f"{tint}{clock} {record.levelname:<8}{self.PLAIN} {record.name}: {record.getMessage()}"

        duration_ms = getattr(record, "duration_ms", None)
        if duration_ms is not None:
            line = f"{line} [{duration_ms:.0f}ms]"
        trace = _traceback(self, record)
        return f"{line}\n{trace}" if trace else line


def _pick_format(app) -> str:
    requested = (app.config.get("LOG_FORMAT") or os.getenv("LOG_FORMAT") or "").lower()
    if requested in LOG_FORMATS:
        return requested
    deployed = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
    return "json" if deployed else "readable"


def configure_logging(app):
    """Install the root handler for ``app`` and set levels.

    Safe to call once per app factory run: existing root handlers are
    replaced, so a test session that builds several apps does not print
    every line twice.
    """
    deployed = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
    level_name = (app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL")
                  or ("INFO" if deployed else "DEBUG")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    log_format = _pick_format(app)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging ready level=%s format=%s", level_name, log_format)
