"""
Timestamp and Local-Day Utilities

All instants inside the monitor are timezone-aware UTC datetimes. A "local
date" is the civil date of an instant in a customer's IANA timezone, and
day boundaries are the UTC instants of local midnight.

Example:
    22:30 UTC on 2026-03-01 is 2026-03-02 04:00 in Asia/Kolkata, so its
    local date there is 2026-03-02 while in America/New_York it is still
    2026-03-01.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """
    Normalise a datetime to aware UTC.

    Naive datetimes are taken to already be UTC.
    """
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def local_date_of(ts: datetime, tz: ZoneInfo) -> date:
    """Civil date of an instant in the given timezone"""
    return ensure_utc(ts).astimezone(tz).date()


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    """
    UTC instant at which the local day `day` starts in `tz`.

    Where midnight falls inside a DST gap, zoneinfo resolves it with the
    pre-transition offset, which lands on the first real instant of the day.
    """
    local = datetime.combine(day, time.min, tzinfo=tz)
    return local.astimezone(timezone.utc)


def day_boundary_after(day: date, tz: ZoneInfo) -> datetime:
    """UTC instant of the local midnight that ends `day`"""
    return local_midnight(day + timedelta(days=1), tz)


def local_day_hours(day: date, tz: ZoneInfo) -> float:
    """Length of a local day in hours (23, 24 or 25 around DST changes)"""
    return hours_between(local_midnight(day, tz), day_boundary_after(day, tz))


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from start to end, clamped at zero"""
    seconds = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return max(0.0, seconds / 3600.0)


def to_db_timestamp(ts: datetime | None) -> str | None:
    """
    Serialise an instant for SQLite.

    Fixed-width UTC ISO strings sort lexicographically in time order,
    which the range queries rely on.
    """
    if ts is None:
        return None
    return ensure_utc(ts).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a timestamp written by to_db_timestamp"""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
