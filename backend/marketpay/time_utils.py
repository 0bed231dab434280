from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    - digits only are read as epoch milliseconds (gateway style)
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None

    if s.isdigit():
        return from_epoch_ms(int(s))

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


def to_local_iso(dt: Optional[datetime], tz_name: str) -> Optional[str]:
    """Render a UTC-naive datetime in a named timezone (reports)."""
    if dt is None:
        return None
    if isinstance(dt, date) and not isinstance(dt, datetime):
        dt = datetime.combine(dt, time.min)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(ZoneInfo(tz_name)).replace(microsecond=0).isoformat()


# =============================================================================
# EPOCH MILLISECONDS (Payme wire format)
# =============================================================================

def to_epoch_ms(dt: Optional[datetime]) -> int:
    """Gateway timestamps: epoch milliseconds, 0 when unset."""
    if dt is None:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


# =============================================================================
# CALENDAR MONTHS
# =============================================================================

def month_start(value: date | datetime) -> date:
    """First day of the month containing value."""
    return date(value.year, value.month, 1)


def add_months(value: date, months: int) -> date:
    """First day of the month `months` after the month of value."""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start's month to end's month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def month_label(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a UTC calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """[start, end) of a UTC calendar month."""
    if month < 1 or month > 12:
        raise ValueError("Invalid month. Use 1-12.")
    start = date(year, month, 1)
    return datetime.combine(start, time.min), datetime.combine(add_months(start, 1), time.min)
