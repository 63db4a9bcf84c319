"""Shared helpers for backend test suites."""

from datetime import date, datetime, time, timedelta, timezone

TUTOR_ID = "tutor-1"
OTHER_TUTOR_ID = "tutor-2"
STUDENT_ID = "student-1"
OTHER_STUDENT_ID = "student-2"
ADMIN_ID = "admin-1"


def next_weekday(weekday: int, weeks_ahead: int = 1) -> date:
    """A future date falling on ``weekday`` (Python numbering, Monday = 0)."""
    today = date.today()
    days = (weekday - today.weekday()) % 7 + 7 * weeks_ahead
    return today + timedelta(days=days)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def actor_headers(actor_id: str, role: str) -> dict:
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


__all__ = [
    "ADMIN_ID",
    "OTHER_STUDENT_ID",
    "OTHER_TUTOR_ID",
    "STUDENT_ID",
    "TUTOR_ID",
    "actor_headers",
    "at",
    "next_weekday",
]
