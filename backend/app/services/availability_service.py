# backend/app/services/availability_service.py
"""
Availability Service for the TutorHub scheduling engine

Manages both availability shapes:
- recurring weekly templates, created and (de)activated by the tutor
- date-bound slots, created one-off or by expanding a template

Expansion is idempotent: candidates that already have a slot at the same
(tutor, date, start time) are skipped, as are candidates overlapping another
available slot that day. Re-running the same expansion creates nothing and
reports ``nothing_to_create``.

Removal dispatches on ``SlotKind``: templates are deactivated, date-bound
slots are soft-disabled while a live appointment references them and hard
deleted otherwise.
"""

from dataclasses import dataclass, field
from datetime import date, time, timedelta
import logging
from typing import List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import DAYS_PER_WEEK, MAX_EXPANSION_WEEKS
from ..core.enums import ExpansionStatus, SlotKind
from ..core.exceptions import (
    AvailabilityOverlapException,
    ConflictException,
    NotFoundException,
    RepositoryIntegrityError,
    ValidationException,
)
from ..core.timezone_utils import day_of_week as weekday_index
from ..idempotency.guard import IdempotencyGuard
from ..models.availability import AvailabilitySlot, RecurringAvailability
from ..principal import ActorPrincipal
from ..repositories import RepositoryFactory
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.availability_repository import AvailabilityRepository
from .base import BaseService
from .conflict_checker import ConflictChecker, find_conflicts, format_range

logger = logging.getLogger(__name__)

RECURRING_SLOT_REASON = "Recurring availability slot"

AnySlot = Union[RecurringAvailability, AvailabilitySlot]


@dataclass(frozen=True)
class SlotCandidate:
    slot_date: date
    start_time: time
    end_time: time


@dataclass
class ExpansionResult:
    status: ExpansionStatus
    created: List[AvailabilitySlot] = field(default_factory=list)
    skipped_duplicates: List[date] = field(default_factory=list)
    skipped_conflicts: List[date] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


@dataclass(frozen=True)
class RemovalResult:
    kind: SlotKind
    slot_id: str
    action: str  # deactivated | disabled | deleted


class AvailabilityExpander:
    """Turns a weekly pattern into concrete dated slot candidates."""

    @staticmethod
    def resolve_end_date(
        start_date: date, end_date: Optional[date] = None, weeks: Optional[int] = None
    ) -> date:
        """Inclusive window end; ``weeks`` covers exactly that many occurrences."""
        if end_date is not None and weeks is not None:
            raise ValidationException("Provide either end_date or weeks, not both")
        if end_date is None:
            weeks = settings.default_expansion_weeks if weeks is None else weeks
            if weeks < 1:
                raise ValidationException("weeks must be at least 1", details={"weeks": weeks})
            end_date = start_date + timedelta(days=DAYS_PER_WEEK * weeks - 1)
        if end_date < start_date:
            raise ValidationException(
                "end_date must not be before start_date",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        if (end_date - start_date).days >= DAYS_PER_WEEK * MAX_EXPANSION_WEEKS:
            raise ValidationException(
                f"Expansion window cannot exceed {MAX_EXPANSION_WEEKS} weeks",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        return end_date

    @staticmethod
    def occurrence_dates(day_of_week: int, start_date: date, end_date: date) -> List[date]:
        """Every date in ``[start_date, end_date]`` falling on ``day_of_week`` (0 = Sunday)."""
        if not 0 <= day_of_week <= 6:
            raise ValidationException(
                "day_of_week must be between 0 (Sunday) and 6 (Saturday)",
                details={"day_of_week": day_of_week},
            )
        cursor = start_date
        while weekday_index(cursor) != day_of_week:
            cursor += timedelta(days=1)

        dates = []
        while cursor <= end_date:
            dates.append(cursor)
            cursor += timedelta(days=DAYS_PER_WEEK)
        return dates

    def expand(
        self,
        day_of_week: int,
        start_time: time,
        end_time: time,
        start_date: date,
        end_date: Optional[date] = None,
        weeks: Optional[int] = None,
    ) -> List[SlotCandidate]:
        if end_time <= start_time:
            raise ValidationException("End time must be after start time")
        last = self.resolve_end_date(start_date, end_date, weeks)
        return [
            SlotCandidate(slot_date=d, start_time=start_time, end_time=end_time)
            for d in self.occurrence_dates(day_of_week, start_date, last)
        ]


class AvailabilityService(BaseService):
    """
    Service for tutor availability.

    Overlap is checked per tutor-day for date-bound slots and per
    tutor-weekday for recurring templates.
    """

    def __init__(
        self,
        db: Session,
        guard: Optional[IdempotencyGuard] = None,
        repository: Optional[AvailabilityRepository] = None,
        appointment_repository: Optional[AppointmentRepository] = None,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.guard = guard
        self.repository = repository or RepositoryFactory.create_availability_repository(db)
        self.appointment_repository = (
            appointment_repository or RepositoryFactory.create_appointment_repository(db)
        )
        self.conflict_checker = conflict_checker or ConflictChecker(
            db,
            availability_repository=self.repository,
            appointment_repository=self.appointment_repository,
        )
        self.expander = AvailabilityExpander()

    # Recurring templates

    @BaseService.measure_operation("create_recurring_availability")
    def create_recurring(
        self,
        actor: ActorPrincipal,
        tutor_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        is_active: bool = True,
    ) -> RecurringAvailability:
        actor.require_tutor(tutor_id, "create availability")
        self._validate_day_of_week(day_of_week)
        self.conflict_checker.validate_time_range(start_time, end_time)

        with self.transaction():
            if is_active:
                self._ensure_no_recurring_overlap(tutor_id, day_of_week, start_time, end_time)
            template = self.repository.create_recurring(
                tutor_id=tutor_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                is_active=is_active,
            )

        self.log_operation(
            "recurring_availability_created",
            tutor_id=tutor_id,
            recurring_id=template.id,
            day_of_week=day_of_week,
        )
        return template

    # Expansion

    @BaseService.measure_operation("expand_availability")
    def expand(
        self,
        actor: ActorPrincipal,
        tutor_id: Optional[str] = None,
        day_of_week: Optional[int] = None,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        weeks: Optional[int] = None,
        recurring_id: Optional[str] = None,
    ) -> ExpansionResult:
        """
        Create date-bound slots for every occurrence of a weekly pattern.

        The pattern comes either from the explicit fields or from an
        existing recurring template (``recurring_id``).
        """
        if recurring_id:
            template = self.repository.get_recurring_by_id(recurring_id)
            if not template:
                raise NotFoundException("Recurring availability not found")
            if tutor_id and tutor_id != template.tutor_id:
                raise ValidationException("recurring_id belongs to a different tutor")
            if not template.is_active:
                raise ValidationException("Cannot expand an inactive recurring availability")
            tutor_id = template.tutor_id
            day_of_week = template.day_of_week
            start_time = template.start_time
            end_time = template.end_time

        if tutor_id is None or day_of_week is None or start_time is None or end_time is None:
            raise ValidationException(
                "tutor_id, day_of_week, start_time and end_time are required without recurring_id"
            )
        if start_date is None:
            raise ValidationException("start_date is required")

        actor.require_tutor(tutor_id, "expand availability")
        candidates = self.expander.expand(
            day_of_week, start_time, end_time, start_date, end_date=end_date, weeks=weeks
        )

        if not candidates:
            self.log_operation(
                "availability_expansion_no_occurrences",
                tutor_id=tutor_id,
                day_of_week=day_of_week,
                start_date=start_date.isoformat(),
            )
            return ExpansionResult(status=ExpansionStatus.NO_OCCURRENCES)

        if self.guard is None:
            return self._persist_candidates(tutor_id, candidates, recurring_id)

        with self.guard.hold(f"availability:{tutor_id}") as acquired:
            if not acquired:
                raise ConflictException(
                    "Availability for this tutor is being updated, please retry",
                    code="AVAILABILITY_BUSY",
                )
            return self._persist_candidates(tutor_id, candidates, recurring_id)

    def _persist_candidates(
        self,
        tutor_id: str,
        candidates: List[SlotCandidate],
        recurring_id: Optional[str],
    ) -> ExpansionResult:
        result = ExpansionResult(status=ExpansionStatus.NOTHING_TO_CREATE)
        dates = [c.slot_date for c in candidates]

        try:
            with self.transaction():
                existing_by_date = self.repository.get_slots_for_dates(tutor_id, dates)
                to_create = []
                for candidate in candidates:
                    existing = existing_by_date.get(candidate.slot_date, [])
                    if any(slot.start_time == candidate.start_time for slot in existing):
                        result.skipped_duplicates.append(candidate.slot_date)
                        continue
                    available = [slot for slot in existing if slot.is_available]
                    if find_conflicts(candidate.start_time, candidate.end_time, available):
                        result.skipped_conflicts.append(candidate.slot_date)
                        continue
                    to_create.append(
                        {
                            "tutor_id": tutor_id,
                            "slot_date": candidate.slot_date,
                            "start_time": candidate.start_time,
                            "end_time": candidate.end_time,
                            "is_available": True,
                            "reason": RECURRING_SLOT_REASON,
                            "recurring_id": recurring_id,
                        }
                    )
                result.created = self.repository.bulk_create_slots(to_create)
        except RepositoryIntegrityError as exc:
            raise ConflictException(
                "Availability changed while expanding, please retry",
                code="AVAILABILITY_OVERLAP",
            ) from exc

        if result.created:
            result.status = ExpansionStatus.CREATED

        self.log_operation(
            "availability_expanded",
            tutor_id=tutor_id,
            status=result.status.value,
            created_count=result.created_count,
            skipped_duplicates=len(result.skipped_duplicates),
            skipped_conflicts=len(result.skipped_conflicts),
        )
        return result

    # Date-bound slots

    @BaseService.measure_operation("create_availability_slot")
    def create_slot(
        self,
        actor: ActorPrincipal,
        tutor_id: str,
        slot_date: date,
        start_time: time,
        end_time: time,
        reason: Optional[str] = None,
    ) -> AvailabilitySlot:
        actor.require_tutor(tutor_id, "create availability")
        self.conflict_checker.validate_time_range(start_time, end_time)

        try:
            with self.transaction():
                self._ensure_no_slot_overlap(tutor_id, slot_date, start_time, end_time)
                slot = self.repository.create(
                    tutor_id=tutor_id,
                    slot_date=slot_date,
                    start_time=start_time,
                    end_time=end_time,
                    is_available=True,
                    reason=reason,
                )
        except RepositoryIntegrityError as exc:
            raise AvailabilityOverlapException(
                slot_date.isoformat(),
                format_range(start_time, end_time),
                format_range(start_time, end_time),
            ) from exc

        self.log_operation(
            "availability_slot_created",
            tutor_id=tutor_id,
            slot_id=slot.id,
            slot_date=slot_date.isoformat(),
        )
        return slot

    @BaseService.measure_operation("list_availability")
    def list_availability(
        self,
        tutor_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_inactive: bool = False,
    ) -> Tuple[List[RecurringAvailability], List[AvailabilitySlot]]:
        recurring = self.repository.list_recurring(tutor_id, include_inactive=include_inactive)
        slots = self.repository.list_slots(
            tutor_id,
            start_date=start_date,
            end_date=end_date,
            include_unavailable=include_inactive,
        )
        return recurring, slots

    # Update / remove (dispatch on kind)

    @BaseService.measure_operation("update_availability")
    def update_availability(
        self,
        actor: ActorPrincipal,
        kind: SlotKind,
        slot_id: str,
        active: Optional[bool] = None,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
    ) -> AnySlot:
        """Toggle a slot on or off, or move its time range (re-checked for overlap)."""
        slot = self._get_slot(kind, slot_id)
        actor.require_tutor(slot.tutor_id, "update availability")

        new_start = start_time or slot.start_time
        new_end = end_time or slot.end_time
        self.conflict_checker.validate_time_range(new_start, new_end)

        try:
            with self.transaction():
                if kind == SlotKind.RECURRING:
                    will_be_active = slot.is_active if active is None else active
                    if will_be_active:
                        self._ensure_no_recurring_overlap(
                            slot.tutor_id, slot.day_of_week, new_start, new_end, exclude_id=slot.id
                        )
                    slot.is_active = will_be_active
                else:
                    will_be_available = slot.is_available if active is None else active
                    if will_be_available:
                        self._ensure_no_slot_overlap(
                            slot.tutor_id, slot.slot_date, new_start, new_end, exclude_id=slot.id
                        )
                    slot.is_available = will_be_available
                slot.start_time = new_start
                slot.end_time = new_end
                self.repository.flush()
        except RepositoryIntegrityError as exc:
            raise ConflictException(
                "Another slot already starts at this time", code="AVAILABILITY_OVERLAP"
            ) from exc

        self.log_operation("availability_updated", kind=kind.value, slot_id=slot_id)
        return slot

    @BaseService.measure_operation("remove_availability")
    def remove_availability(
        self, actor: ActorPrincipal, kind: SlotKind, slot_id: str
    ) -> RemovalResult:
        slot = self._get_slot(kind, slot_id)
        actor.require_tutor(slot.tutor_id, "remove availability")

        with self.transaction():
            if kind == SlotKind.RECURRING:
                slot.deactivate()
                action = "deactivated"
            elif self.appointment_repository.has_any_for_slot(slot.id):
                slot.disable("Referenced by a booking")
                action = "disabled"
            else:
                self.repository.delete(slot.id)
                action = "deleted"
            self.repository.flush()

        self.log_operation("availability_removed", kind=kind.value, slot_id=slot_id, action=action)
        return RemovalResult(kind=kind, slot_id=slot_id, action=action)

    # Helpers

    def _get_slot(self, kind: SlotKind, slot_id: str) -> AnySlot:
        if kind == SlotKind.RECURRING:
            slot: Optional[AnySlot] = self.repository.get_recurring_by_id(slot_id)
        else:
            slot = self.repository.get_by_id(slot_id)
        if not slot:
            raise NotFoundException(
                "Availability not found", details={"kind": kind.value, "slot_id": slot_id}
            )
        return slot

    def _ensure_no_recurring_overlap(
        self,
        tutor_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        exclude_id: Optional[str] = None,
    ) -> None:
        conflicts = self.conflict_checker.check_recurring_conflicts(
            tutor_id, day_of_week, start_time, end_time, exclude_recurring_id=exclude_id
        )
        if conflicts:
            first = conflicts[0]
            raise AvailabilityOverlapException(
                f"day {day_of_week}",
                format_range(start_time, end_time),
                format_range(first.start_time, first.end_time),
            )

    def _ensure_no_slot_overlap(
        self,
        tutor_id: str,
        slot_date: date,
        start_time: time,
        end_time: time,
        exclude_id: Optional[str] = None,
    ) -> None:
        conflicts = self.conflict_checker.check_slot_conflicts(
            tutor_id, slot_date, start_time, end_time, exclude_slot_id=exclude_id
        )
        if conflicts:
            first = conflicts[0]
            raise AvailabilityOverlapException(
                slot_date.isoformat(),
                format_range(start_time, end_time),
                format_range(first.start_time, first.end_time),
            )

    @staticmethod
    def _validate_day_of_week(day_of_week: int) -> None:
        if not 0 <= day_of_week <= 6:
            raise ValidationException(
                "day_of_week must be between 0 (Sunday) and 6 (Saturday)",
                details={"day_of_week": day_of_week},
            )
