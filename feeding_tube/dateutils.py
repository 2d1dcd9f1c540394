"""Timestamp parsing and formatting helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

_FALLBACK_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%d")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalise(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a persisted or upstream timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (``Z`` suffix and fractional seconds
    included) and the SQLite ``CURRENT_TIMESTAMP`` format. Anything else
    yields ``None``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return _normalise(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    normalized = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return _normalise(datetime.fromisoformat(normalized))
    except ValueError:
        pass
    for fmt in _FALLBACK_FORMATS:
        try:
            return _normalise(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def to_storage(value: Any) -> str | None:
    """Render a timestamp in the canonical, lexicographically sortable form."""

    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.replace(microsecond=0).isoformat()


def parse_upload_date(code: Any) -> datetime | None:
    """Convert a ``YYYYMMDD`` code into midnight UTC of that day."""

    if not isinstance(code, str) or len(code) != 8 or not code.isdigit():
        return None
    try:
        return datetime.strptime(code, "%Y%m%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def relative_date(value: datetime | None, now: datetime | None = None) -> str:
    if value is None:
        return ""
    reference = _normalise(now) if now is not None else utcnow()
    seconds = (reference - _normalise(value)).total_seconds()
    if seconds < 0:
        return "upcoming"
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)
    if minutes < 60:
        return f"{max(1, minutes)}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    if days < 30:
        return f"{days // 7}w ago"
    if days < 365:
        return f"{days // 30}mo ago"
    return f"{days // 365}y ago"


def format_duration(seconds: int | None) -> str:
    if not seconds:
        return "--:--"
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


__all__ = [
    "format_duration",
    "parse_timestamp",
    "parse_upload_date",
    "relative_date",
    "to_storage",
    "utcnow",
]
