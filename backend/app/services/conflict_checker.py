# backend/app/services/conflict_checker.py
"""
Conflict Checker Service for the TutorHub scheduling engine

Overlap detection for availability slots and appointments.

The overlap rule is half-open: ``[start, end)`` intersects ``[other_start,
other_end)`` iff ``start < other_end and end > other_start``. Touching
endpoints never conflict.

The module-level functions are pure and work on any already-fetched
candidates. ConflictChecker fetches the right candidate set for each
resource (tutor-day for availability, tutor calendar for appointments)
and applies them.
"""

from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from ..core.exceptions import ValidationException
from ..models.appointment import Appointment
from ..models.availability import AvailabilitySlot, RecurringAvailability
from ..repositories import RepositoryFactory
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.availability_repository import AvailabilityRepository
from .base import BaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Appointments never exceed a day, so a day either side covers every candidate
APPOINTMENT_CANDIDATE_PADDING = timedelta(days=1)


def _default_bounds(item: Any) -> Tuple[Any, Any]:
    return item.start_time, item.end_time


def intervals_overlap(start: Any, end: Any, other_start: Any, other_end: Any) -> bool:
    """Half-open interval intersection test."""
    return start < other_end and end > other_start


def find_conflicts(
    start: Any,
    end: Any,
    existing: Iterable[T],
    bounds: Callable[[T], Tuple[Any, Any]] = _default_bounds,
) -> List[T]:
    """Existing items whose ``bounds`` overlap ``[start, end)``."""
    conflicts = []
    for item in existing:
        other_start, other_end = bounds(item)
        if intervals_overlap(start, end, other_start, other_end):
            conflicts.append(item)
    return conflicts


def has_conflict(
    start: Any,
    end: Any,
    existing: Iterable[T],
    bounds: Callable[[T], Tuple[Any, Any]] = _default_bounds,
) -> bool:
    return any(intervals_overlap(start, end, *bounds(item)) for item in existing)


def format_range(start: Any, end: Any) -> str:
    def _fmt(value: Any) -> str:
        if isinstance(value, time):
            return value.strftime("%H:%M")
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    return f"{_fmt(start)}-{_fmt(end)}"


class ConflictChecker(BaseService):
    """
    Service for checking availability and appointment conflicts.

    Centralizes candidate fetching so every caller checks against the same
    set: available date-bound slots on the tutor-day, active recurring
    templates on the tutor-weekday, and non-terminal appointments on the
    tutor calendar.
    """

    def __init__(
        self,
        db: Session,
        availability_repository: Optional[AvailabilityRepository] = None,
        appointment_repository: Optional[AppointmentRepository] = None,
    ):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.availability_repository = (
            availability_repository or RepositoryFactory.create_availability_repository(db)
        )
        self.appointment_repository = (
            appointment_repository or RepositoryFactory.create_appointment_repository(db)
        )

    @BaseService.measure_operation("check_slot_conflicts")
    def check_slot_conflicts(
        self,
        tutor_id: str,
        slot_date: date,
        start_time: time,
        end_time: time,
        exclude_slot_id: Optional[str] = None,
    ) -> List[AvailabilitySlot]:
        """Available date-bound slots on the same tutor-day overlapping the range."""
        candidates = self.availability_repository.get_slots_for_date(
            tutor_id, slot_date, available_only=True, exclude_id=exclude_slot_id
        )
        conflicts = find_conflicts(start_time, end_time, candidates)
        if conflicts:
            self.logger.info(
                f"Found {len(conflicts)} slot conflicts for {tutor_id} on {slot_date} "
                f"between {format_range(start_time, end_time)}"
            )
        return conflicts

    @BaseService.measure_operation("check_recurring_conflicts")
    def check_recurring_conflicts(
        self,
        tutor_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        exclude_recurring_id: Optional[str] = None,
    ) -> List[RecurringAvailability]:
        """Active recurring templates on the same tutor-weekday overlapping the range."""
        candidates = self.availability_repository.get_active_recurring_for_day(
            tutor_id, day_of_week, exclude_id=exclude_recurring_id
        )
        return find_conflicts(start_time, end_time, candidates)

    @BaseService.measure_operation("check_appointment_conflicts")
    def check_appointment_conflicts(
        self,
        tutor_id: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Non-terminal appointments of the tutor overlapping ``[start, end)``."""
        candidates = self.appointment_repository.get_active_for_tutor_between(
            tutor_id,
            start - APPOINTMENT_CANDIDATE_PADDING,
            end + APPOINTMENT_CANDIDATE_PADDING,
            exclude_appointment_id=exclude_appointment_id,
        )
        conflicts = find_conflicts(start, end, candidates)
        if conflicts:
            self.logger.warning(
                f"Found {len(conflicts)} appointment conflicts for {tutor_id} "
                f"between {format_range(start, end)}"
            )
        return conflicts

    def validate_time_range(self, start_time: time, end_time: time) -> None:
        """Reject empty or inverted wall-clock ranges."""
        if end_time <= start_time:
            raise ValidationException(
                "End time must be after start time",
                details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
            )
