"""
Date helpers — one canonical timestamp format for storage and JSON.

All timestamps are stored as UTC ISO-8601 strings (``YYYY-MM-DDTHH:MM:SSZ``)
so that lexical order in SQLite equals chronological order.
"""

from datetime import date, datetime, time, timedelta, timezone

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Render *value* in the canonical UTC format (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def now_iso() -> str:
    return to_iso(utc_now())


def parse_datetime(value) -> datetime:
    """Parse an ISO date or datetime string (``Z`` suffix allowed) into aware UTC.

    A bare date (``2026-10-24``) is treated as midnight UTC.
    Raises ``ValueError`` on anything unparseable.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("empty datetime")
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_iso(value) -> str:
    """Parse *value* and render it in the canonical storage format."""
    return to_iso(parse_datetime(value))


def parse_end_date(value) -> datetime:
    """Like :func:`parse_datetime`, but a bare date means the last second of that day."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return parse_datetime(value) + timedelta(days=1) - timedelta(seconds=1)
    text = str(value).strip()
    dt = parse_datetime(text)
    if "T" not in text.upper() and " " not in text:
        dt += timedelta(days=1) - timedelta(seconds=1)
    return dt
