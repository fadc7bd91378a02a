"""
Standardized UTC timestamp utilities.

Every timestamp this service writes (grant expiries, tracking records,
order bookkeeping) is timezone-aware UTC.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Return current UTC time with timezone info.

    Use this instead of datetime.now() or datetime.utcnow() so comparisons
    against TIMESTAMPTZ columns never mix naive and aware values.
    """
    return datetime.now(timezone.utc)


def days_from(start: datetime, days: int) -> datetime:
    """Return start shifted forward by exactly N days."""
    return start + timedelta(days=days)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes coming back from the driver as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(s) -> Optional[datetime]:
    """
    Parse a timestamp into an aware UTC datetime.

    Accepts datetime objects (returned as-is, made aware) and strings in
    "YYYY-MM-DD HH:MM:SS[.ffffff]" or ISO 8601 form, with or without offset.
    Returns None for None/empty/unparseable input.
    """
    if not s:
        return None
    if isinstance(s, datetime):
        return ensure_aware(s)

    normalized = s.strip().replace("Z", "+00:00")
    try:
        return ensure_aware(datetime.fromisoformat(normalized))
    except ValueError:
        pass

    for fmt in ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return ensure_aware(datetime.strptime(normalized.replace("T", " "), fmt))
        except ValueError:
            continue
    return None


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for JSON payloads (tracking_data, API responses)."""
    if value is None:
        return None
    return ensure_aware(value).isoformat()
