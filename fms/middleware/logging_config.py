"""
Logging setup for the engine.

Services log state transitions with domain context passed as extras:

    logger.info("Task %s completed", idx, extra={"project_id": 7, "task_index": 2})

JSON lines carry that context as top-level keys; the text format prefixes it
as ``[project 7 task 2]`` so a task's history can be followed with grep.
Format comes from the FMS_LOG_FORMAT setting (json | text), defaulting to
JSON outside DEBUG and TESTING; LOG_LEVEL overrides the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Extras copied into JSON lines when present on the record
CONTEXT_KEYS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "project_id",
    "task_index",
    "objection_id",
    "event_type",
    "consumer",
)


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [project 7 task 2]: message``"""

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context(record)
        tags = []
        if "project_id" in ctx:
            tags.append(f"project {ctx['project_id']}")
        if "task_index" in ctx:
            tags.append(f"task {ctx['task_index']}")
        if "objection_id" in ctx:
            tags.append(f"objection {ctx['objection_id']}")
        if "consumer" in ctx:
            tags.append(f"consumer {ctx['consumer']}")
        if "request_id" in ctx:
            tags.append(ctx["request_id"])
        prefix = f" [{' '.join(str(t) for t in tags)}]" if tags else ""

        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<8} {record.name}{prefix}: {record.getMessage()}"
        if "duration_ms" in ctx:
            line += f" [{ctx['duration_ms']:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    is_testing = app.config.get("TESTING", False)
    is_debug = app.config.get("DEBUG", False)

    fmt = app.config.get("FMS_LOG_FORMAT")
    if fmt not in ("json", "text"):
        fmt = "text" if (is_debug or is_testing) else "json"

    level_name = os.getenv("LOG_LEVEL", "DEBUG" if is_debug else "INFO")
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    # create_app() runs once per test session and per CLI call; never stack handlers
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
    return fmt
