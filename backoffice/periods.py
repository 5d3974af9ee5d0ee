from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from backoffice.config import settings

WEEKDAYS = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # naive values come back from SQLite and are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime, tz: ZoneInfo) -> datetime:
    return as_utc(value).astimezone(tz)


def outlet_zone(outlet=None) -> ZoneInfo:
    return ZoneInfo(getattr(outlet, "timezone", None) or settings.timezone)


def local_today(tz: ZoneInfo, now: datetime | None = None) -> date:
    return to_local(now or utcnow(), tz).date()


def weekday_name(target_date: date) -> str:
    return WEEKDAYS[target_date.weekday()]


def day_bounds(target_date: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open UTC bounds ``[start, end)`` of a local calendar day."""
    starts_at = datetime.combine(target_date, time(0, 0), tzinfo=tz)
    ends_at = datetime.combine(target_date + timedelta(days=1), time(0, 0), tzinfo=tz)
    return starts_at.astimezone(timezone.utc), ends_at.astimezone(timezone.utc)


def week_bounds(target_date: date) -> tuple[date, date]:
    monday = target_date - timedelta(days=target_date.weekday())
    return monday, monday + timedelta(days=6)


def month_bounds(target_date: date) -> tuple[date, date]:
    last_day = calendar.monthrange(target_date.year, target_date.month)[1]
    return target_date.replace(day=1), target_date.replace(day=last_day)


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def format_period(start: date, end: date) -> str:
    return f"{start.day} {start:%b} - {end.day} {end:%b} {end.year}"
