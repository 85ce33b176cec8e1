from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

INDIA_TZ = ZoneInfo("Asia/Kolkata")


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    All timestamp columns store naive UTC.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    utc_dt = dt.astimezone(timezone.utc)
    return utc_dt.replace(tzinfo=None)


def start_of_today_utc() -> datetime:
    """Midnight of the current UTC day, naive."""
    now = naive_utc_now()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def days_ago_utc(days: int) -> datetime:
    return naive_utc_now() - timedelta(days=days)


def strictly_after(previous: datetime) -> datetime:
    """
    Return the current naive UTC time, nudged forward if the clock has not
    advanced past ``previous`` (coarse clocks can return equal readings).
    """
    now = naive_utc_now()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def format_local_datetime(dt: datetime, fmt: str = "%d/%m/%Y %H:%M") -> str:
    """Render a naive UTC datetime in Indian local time."""
    return dt.replace(tzinfo=timezone.utc).astimezone(INDIA_TZ).strftime(fmt)
