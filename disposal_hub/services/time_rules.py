"""
Time rules for disposal planning.
Timestamps are stored as naive UTC; calendar logic runs in the reference timezone.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Union
import pytz

from ..config import settings


def _tz(timezone_str: Optional[str]):
    try:
        return pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def parse_timestamp(value: Union[str, date, datetime]) -> datetime:
    """
    Parse an ISO date or datetime string (or pass through date/datetime objects).

    A bare date becomes local midnight of that day. Raises ValueError on
    malformed input.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def to_storage(value: Union[str, date, datetime], timezone_str: Optional[str] = None) -> datetime:
    """
    Normalize a timestamp for storage (naive UTC).

    Naive values are interpreted in the reference timezone; aware values
    are converted.
    """
    dt = parse_timestamp(value)
    if dt.tzinfo is None:
        dt = _tz(timezone_str).localize(dt)
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def storage_to_local(stored: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert a stored naive-UTC timestamp to naive local wall-clock time.
    """
    utc_dt = stored.replace(tzinfo=pytz.UTC) if stored.tzinfo is None else stored.astimezone(pytz.UTC)
    return utc_dt.astimezone(_tz(timezone_str)).replace(tzinfo=None)


def local_day_bounds(
    value: Union[str, date, datetime],
    timezone_str: Optional[str] = None,
) -> Tuple[datetime, datetime]:
    """
    Get the storage-space (naive UTC) bounds of the local calendar day containing value.

    Args:
        value: Date, datetime or ISO string. Aware datetimes are first
            converted to the reference timezone.
        timezone_str: Reference timezone (defaults to settings.tz_default)

    Returns:
        (start_of_day, end_of_day), both inclusive
    """
    dt = parse_timestamp(value)
    tz = _tz(timezone_str)
    if dt.tzinfo is not None:
        dt = dt.astimezone(tz).replace(tzinfo=None)
    start_local = datetime.combine(dt.date(), time.min)
    end_local = start_local + timedelta(days=1) - timedelta(microseconds=1)
    return to_storage(start_local, timezone_str), to_storage(end_local, timezone_str)


def utcnow() -> datetime:
    return datetime.utcnow()


def isoformat_utc(stored: Optional[datetime]) -> Optional[str]:
    if stored is None:
        return None
    if stored.tzinfo is None:
        stored = stored.replace(tzinfo=pytz.UTC)
    return stored.astimezone(pytz.UTC).isoformat()


def is_date_only(value) -> bool:
    """True for a calendar date without a time component ("2025-01-06" or a date object)."""
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and len(value.strip()) == 10
