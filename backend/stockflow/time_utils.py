from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" or "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
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

    if dt.tzinfo is None:
        return dt

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


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def period_window(
    period: str,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """
    Resolve a named reporting period into a [start, end] UTC-naive window.

    Periods: today, yesterday, 7days, 30days, 6months, 1year, custom.
    Month/year periods are approximated with 30/365-day spans.
    """
    now = now or utcnow()
    today = start_of_day(now)

    if period == "today":
        return today, now
    if period == "yesterday":
        return today - timedelta(days=1), today - timedelta(microseconds=1)
    if period == "7days":
        return now - timedelta(days=7), now
    if period == "30days":
        return now - timedelta(days=30), now
    if period == "6months":
        return now - timedelta(days=180), now
    if period == "1year":
        return now - timedelta(days=365), now
    if period == "custom":
        if start is None or end is None:
            raise ValueError("custom period requires start_date and end_date")
        if start > end:
            raise ValueError("start_date must be before end_date")
        return start, end
    raise ValueError(f"Unknown period: {period}")
