"""Time utilities (UTC now, tz normalisation, calendar day boundaries)."""
from __future__ import annotations
from datetime import date, datetime, timezone, timedelta
from zoneinfo import ZoneInfo

def _zone(tz_name: str):
    if tz_name.upper() in ("UTC", "ETC/UTC"):
        return timezone.utc
    return ZoneInfo(tz_name)

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we persist is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def day_for(moment: datetime, tz_name: str = "UTC") -> date:
    """Calendar day `moment` falls on in the given zone."""
    return ensure_utc(moment).astimezone(_zone(tz_name)).date()

def day_bounds(day: date, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day in the given zone."""
    zone = _zone(tz_name)
    start = datetime(day.year, day.month, day.day, tzinfo=zone)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

def format_elapsed(start: datetime, end: datetime | None = None) -> str:
    end_ts = end or utc_now()
    delta: timedelta = end_ts - start
    ms = int(delta.total_seconds() * 1000)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms/1000:.2f}s"
    return f"{delta.total_seconds()/60:.2f}m"

__all__ = ["utc_now", "ensure_utc", "day_for", "day_bounds", "format_elapsed"]
