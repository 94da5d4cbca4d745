# ================================================================================
# TIME HELPERS
# ================================================================================
# Timestamps are stored as UTC ISO-8601 strings with second precision, e.g.
# "2026-10-18T09:00:00+00:00". A fixed format keeps Firestore range filters
# (<, >=) on those strings in chronological order.
# ================================================================================

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def now_iso() -> str:
    return to_iso(utcnow())


def parse_datetime(value) -> datetime:
    """
    Parse an ISO-8601 string (or pass through a datetime) into an aware UTC datetime.

    Naive values are treated as UTC. A trailing "Z" is accepted.

    Raises:
        ValueError: if the value cannot be parsed
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = (value or "").strip()
        if not text:
            raise ValueError("Empty date")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0)


def shift_iso(dt: datetime, **delta) -> str:
    return to_iso(dt + timedelta(**delta))
