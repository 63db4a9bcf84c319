# backend/tests/unit/services/test_conflict_checker.py
"""
Unit tests for the half-open interval helpers in the conflict checker.
"""

from datetime import datetime, time, timedelta, timezone
from types import SimpleNamespace

from app.services.conflict_checker import (
    find_conflicts,
    format_range,
    has_conflict,
    intervals_overlap,
)

BASE = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)


def _appt(start_offset_min: int, minutes: int):
    start = BASE + timedelta(minutes=start_offset_min)
    return SimpleNamespace(start_time=start, end_time=start + timedelta(minutes=minutes))


class TestIntervalsOverlap:
    def test_touching_intervals_do_not_overlap(self):
        assert not intervals_overlap(time(10), time(11), time(11), time(12))
        assert not intervals_overlap(time(11), time(12), time(10), time(11))

    def test_partial_overlap(self):
        assert intervals_overlap(time(10, 30), time(11, 30), time(10), time(11))

    def test_containment_overlaps_both_ways(self):
        assert intervals_overlap(time(9), time(13), time(10), time(11))
        assert intervals_overlap(time(10), time(11), time(9), time(13))


class TestFindConflicts:
    def test_back_to_back_appointments_are_free(self):
        existing = [_appt(0, 60)]
        start = BASE + timedelta(hours=1)
        assert find_conflicts(start, start + timedelta(hours=1), existing) == []

    def test_overlapping_appointment_is_reported(self):
        first = _appt(0, 60)
        second = _appt(120, 60)
        start = BASE + timedelta(minutes=30)
        conflicts = find_conflicts(start, start + timedelta(hours=1), [first, second])
        assert conflicts == [first]

    def test_custom_bounds(self):
        rows = [("a", 1, 5), ("b", 5, 9)]
        conflicts = find_conflicts(4, 6, rows, bounds=lambda row: (row[1], row[2]))
        assert [row[0] for row in conflicts] == ["a", "b"]

    def test_has_conflict(self):
        existing = [_appt(0, 60)]
        assert has_conflict(BASE, BASE + timedelta(minutes=15), existing)
        assert not has_conflict(BASE - timedelta(hours=1), BASE, existing)


def test_format_range():
    assert format_range(time(9), time(10, 30)) == "09:00-10:30"
    assert format_range(BASE, BASE + timedelta(hours=1)).startswith("2030-01-07T10:00:00")
