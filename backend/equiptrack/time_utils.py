from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple


MS_PER_DAY = 24 * 60 * 60 * 1000


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.utcnow()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" and "YYYY-MM-DDTHH:MM" (naive) are interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def normalize_datetime(value) -> Optional[datetime]:
    """
    Normalize a datetime-ish value to canonical UTC-naive.

    Accepts None, datetime (aware or naive), date (midnight UTC) or an
    ISO-8601 string. Raises ValueError for anything else.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime.combine(value, time.min)

    if isinstance(value, str):
        dt = parse_iso_datetime(value)
        if dt is None:
            raise ValueError("invalid datetime")
        return dt

    raise ValueError("invalid datetime")


def parse_as_of(value=None) -> datetime:
    """Reference time for derivations; None means now."""
    dt = normalize_datetime(value)
    return dt if dt is not None else utcnow()


def day_of(dt: datetime) -> date:
    """Calendar day (UTC) a canonical datetime falls on."""
    return dt.date()


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def ceil_days_between(start: datetime, end: datetime) -> int:
    """Whole days between two instants, any started day counting as one."""
    ms = (end - start) // timedelta(milliseconds=1)
    return -(-ms // MS_PER_DAY)


def coerce_period_bounds(period_start, period_end) -> Tuple[datetime, datetime]:
    """
    Normalize an inclusive calendar-day period to a half-open interval.

    The start snaps to midnight of its day; the end snaps to midnight of the
    day after its day, so the last calendar day counts in full.
    """
    start_dt = normalize_datetime(period_start)
    end_dt = normalize_datetime(period_end)
    if start_dt is None or end_dt is None:
        raise ValueError("period_start and period_end are required")

    lower = start_of_day(day_of(start_dt))
    upper = start_of_day(day_of(end_dt) + timedelta(days=1))
    if upper <= lower:
        raise ValueError("period_start must not be after period_end")
    return lower, upper
