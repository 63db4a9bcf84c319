"""
Timezone utilities for the TutorHub scheduling engine.

Availability is stored as wall-clock dates and times; appointments are
stored as UTC instants. These helpers convert between the two using the
configured schedule timezone.
"""

from datetime import date, datetime, time, timezone

import pytz

from .config import settings


def get_schedule_timezone() -> pytz.BaseTzInfo:
    """Timezone that slot wall-clock times are expressed in."""
    return pytz.timezone(settings.schedule_timezone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime, assuming UTC when naive."""
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(timezone.utc)


def local_to_utc(day: date, at: time) -> datetime:
    """Interpret a wall-clock date/time in the schedule timezone as a UTC instant."""
    tz = get_schedule_timezone()
    return tz.localize(datetime.combine(day, at)).astimezone(timezone.utc)


def utc_to_local(dt: datetime) -> datetime:
    """Convert an instant to the schedule timezone."""
    return ensure_utc(dt).astimezone(get_schedule_timezone())


def day_of_week(day: date) -> int:
    """Weekday index with 0 = Sunday through 6 = Saturday."""
    return (day.weekday() + 1) % 7
