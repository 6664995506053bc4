from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
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


def is_date_only(value: str) -> bool:
    """True for 'YYYY-MM-DD' strings (no time component)."""
    s = value.strip()
    if len(s) != 10:
        return False
    try:
        date.fromisoformat(s)
    except ValueError:
        return False
    return True


def parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def parse_range_boundary(value: Optional[str], *, end: bool) -> Optional[datetime]:
    """
    Parse a report filter boundary.

    Full timestamps are taken as-is. Date-only strings expand to the start
    of that day, or to the last instant of that day when `end` is set, so a
    date-only end bound is inclusive.
    """
    if value is None or not str(value).strip():
        return None
    s = str(value).strip()
    if is_date_only(s):
        day = date.fromisoformat(s)
        return end_of_day(day) if end else start_of_day(day)
    return parse_iso_datetime(s)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    return start_of_day(day), end_of_day(day)


def week_start(dt: datetime) -> date:
    """Sunday that opens the week containing `dt`."""
    d = dt.date()
    return d - timedelta(days=(d.weekday() + 1) % 7)


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
