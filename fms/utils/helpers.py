"""Shared request-parsing and datetime helpers.

as_utc:            normalise naive datetimes read back from SQLite
parse_datetime:    ISO string → aware UTC datetime (raises ValueError)
parse_bool:        JSON / query-string truthiness
expected_version:  optimistic-concurrency token from body or If-Match
"""
import logging
from datetime import date, datetime, time, timezone

logger = logging.getLogger(__name__)


def as_utc(value):
    """Return *value* as an aware UTC datetime.

    SQLite drops tzinfo on DateTime(timezone=True) columns, so values read
    back from it are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow():
    return datetime.now(timezone.utc)


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime into an aware UTC datetime.

    Accepts datetime / date objects, ``YYYY-MM-DD`` (midnight UTC) and any
    ``datetime.fromisoformat`` string, including a trailing ``Z``.
    Returns None for empty input and raises ValueError on garbage so the
    blueprint can answer 400.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported date value: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def parse_bool(value, default=None):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "y", "on")


def expected_version(data, headers):
    """Read the caller's version token.

    Body ``version`` wins over the ``If-Match`` header; returns None when
    the caller did not send one (unconditional write).
    """
    raw = (data or {}).get("version")
    if raw is None:
        raw = headers.get("If-Match")
        if raw:
            raw = raw.strip().strip('"')
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid version token: {raw!r}")
