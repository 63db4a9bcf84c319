# backend/app/services/booking_service.py
"""
Booking Service for the TutorHub scheduling engine

Books an appointment exactly once, even under concurrent duplicate requests.

Flow for one request:
1. Resolve and validate the interval (explicit instants or a date-bound slot).
2. Claim the idempotency key. A lost claim returns the earlier appointment
   when it exists, or DuplicateRequest while the first attempt is in flight.
3. Under the tutor-day scheduling mutex, check conflicts against the
   tutor's non-terminal appointments and insert in one transaction. The
   partial unique index on (tutor_id, start_time) is the backstop.
4. After commit, notify both parties (best-effort).

Any failure after the claim releases it so a legitimate retry is not
blocked for the full TTL. Successful claims are left to expire.
"""

from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import AppointmentStatus, NotificationKind
from ..core.exceptions import (
    DuplicateRequestException,
    ForbiddenException,
    NotFoundException,
    RepositoryIntegrityError,
    SlotUnavailableException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, local_to_utc
from ..events.notification_events import NotificationEvent
from ..idempotency.guard import IdempotencyGuard, fingerprint, request_key
from ..models.appointment import Appointment
from ..principal import ActorPrincipal
from ..repositories import RepositoryFactory
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.availability_repository import AvailabilityRepository
from ..repositories.rate_repository import RateRepository
from ..schemas.appointment import AppointmentCreate
from .base import BaseService
from .conflict_checker import ConflictChecker
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class BookingOutcome:
    appointment: Appointment
    duplicate: bool = False


def hours_between(start: datetime, end: datetime) -> Decimal:
    return Decimal(str((end - start).total_seconds())) / Decimal(3600)


class BookingService(BaseService):
    """
    Service coordinating appointment creation.

    Works with UTC instants throughout; slot wall-clock times are converted
    using the schedule timezone.
    """

    def __init__(
        self,
        db: Session,
        guard: IdempotencyGuard,
        notification_service: Optional[NotificationService] = None,
        repository: Optional[AppointmentRepository] = None,
        availability_repository: Optional[AvailabilityRepository] = None,
        rate_repository: Optional[RateRepository] = None,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.guard = guard
        self.repository = repository or RepositoryFactory.create_appointment_repository(db)
        self.availability_repository = (
            availability_repository or RepositoryFactory.create_availability_repository(db)
        )
        self.rate_repository = rate_repository or RepositoryFactory.create_rate_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(
            db,
            availability_repository=self.availability_repository,
            appointment_repository=self.repository,
        )
        self.notification_service = notification_service or NotificationService(db)

    @BaseService.measure_operation("create_appointment")
    def create_appointment(
        self,
        actor: ActorPrincipal,
        booking_data: AppointmentCreate,
        idempotency_key: Optional[str] = None,
    ) -> BookingOutcome:
        """
        Book an appointment.

        Args:
            actor: Caller from the identity collaborator
            booking_data: Requested tutor, subject and interval or slot
            idempotency_key: Caller-supplied key; derived from the request when absent

        Returns:
            BookingOutcome with the appointment and whether it was a replay

        Raises:
            ValidationException: Malformed interval, subject or parties
            ForbiddenException: Caller cannot book for this student
            SlotUnavailableException: Interval overlaps a live appointment
            DuplicateRequestException: Identical request still in flight
        """
        student_id = booking_data.student_id or actor.actor_id
        if not actor.acts_for_student(student_id):
            raise ForbiddenException("You can only book appointments for yourself")

        subject = (booking_data.subject or "").strip()
        if not subject:
            raise ValidationException("Subject is required")
        if student_id == booking_data.tutor_id:
            raise ValidationException("Students cannot book themselves as tutor")

        start, end = self._resolve_interval(booking_data)
        self._validate_interval(start, end)

        key = fingerprint(
            self._raw_key(student_id, booking_data.tutor_id, subject, start, end, idempotency_key)
        )

        if not self.guard.claim(key):
            existing = self.repository.get_by_idempotency_key(key)
            if existing is not None:
                self.log_operation(
                    "booking_duplicate_replayed",
                    appointment_id=existing.id,
                    student_id=student_id,
                )
                return BookingOutcome(appointment=existing, duplicate=True)
            raise DuplicateRequestException(details={"idempotency_key": key})

        try:
            appointment = self._insert_exclusively(
                student_id=student_id,
                tutor_id=booking_data.tutor_id,
                subject=subject,
                start=start,
                end=end,
                notes=booking_data.notes,
                slot_id=booking_data.slot_id,
                key=key,
            )
        except (RepositoryIntegrityError, SlotUnavailableException) as exc:
            # The conflict may be our own twin, booked while the store was
            # failing open or after the claim expired
            existing = self.repository.get_by_idempotency_key(key)
            if existing is not None:
                self.log_operation(
                    "booking_duplicate_replayed",
                    appointment_id=existing.id,
                    student_id=student_id,
                )
                return BookingOutcome(appointment=existing, duplicate=True)
            self.guard.release(key)
            if isinstance(exc, SlotUnavailableException):
                raise
            raise SlotUnavailableException(
                details={"tutor_id": booking_data.tutor_id, "start_time": start.isoformat()}
            ) from exc
        except Exception:
            self.guard.release(key)
            raise

        self.logger.info(
            "booking_created",
            extra={
                "appointment_id": appointment.id,
                "student_id": student_id,
                "tutor_id": appointment.tutor_id,
                "start_time": start.isoformat(),
            },
        )
        self._notify_booked(appointment)
        return BookingOutcome(appointment=appointment)

    @BaseService.measure_operation("get_appointment")
    def get_appointment(self, actor: ActorPrincipal, appointment_id: str) -> Appointment:
        appointment = self.repository.get_by_id(appointment_id)
        if not appointment:
            raise NotFoundException("Appointment not found")
        actor.require_party(appointment.tutor_id, appointment.student_id)
        return appointment

    @BaseService.measure_operation("list_appointments")
    def list_appointments(
        self,
        actor: ActorPrincipal,
        tutor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        """Appointments visible to the caller; non-admins only see their own side."""
        if actor.is_student:
            student_id = actor.actor_id
        elif actor.is_tutor:
            tutor_id = actor.actor_id
        return self.repository.list_appointments(
            tutor_id=tutor_id,
            student_id=student_id,
            status=status,
            start=ensure_utc(start) if start else None,
            end=ensure_utc(end) if end else None,
            skip=skip,
            limit=limit,
        )

    # Internals

    def _resolve_interval(self, booking_data: AppointmentCreate) -> Tuple[datetime, datetime]:
        if booking_data.slot_id:
            slot = self.availability_repository.get_by_id(booking_data.slot_id)
            if not slot:
                raise NotFoundException("Availability slot not found")
            if slot.tutor_id != booking_data.tutor_id:
                raise ValidationException("Slot does not belong to this tutor")
            if not slot.is_available:
                raise SlotUnavailableException(details={"slot_id": slot.id})
            slot_start = local_to_utc(slot.slot_date, slot.start_time)
            slot_end = local_to_utc(slot.slot_date, slot.end_time)
            start = ensure_utc(booking_data.start_time) if booking_data.start_time else slot_start
            end = ensure_utc(booking_data.end_time) if booking_data.end_time else slot_end
            if start < slot_start or end > slot_end:
                raise ValidationException("Requested time falls outside the slot")
            return start, end

        if booking_data.start_time is None or booking_data.end_time is None:
            raise ValidationException("Either slot_id or start_time and end_time are required")
        return ensure_utc(booking_data.start_time), ensure_utc(booking_data.end_time)

    @staticmethod
    def _validate_interval(start: datetime, end: datetime) -> None:
        if end <= start:
            raise ValidationException(
                "End time must be after start time",
                details={"start_time": start.isoformat(), "end_time": end.isoformat()},
            )
        minutes = (end - start).total_seconds() / 60
        if minutes < settings.min_booking_minutes:
            raise ValidationException(
                f"Appointments must be at least {settings.min_booking_minutes} minutes",
                details={"duration_minutes": minutes},
            )
        if minutes > settings.max_booking_minutes:
            raise ValidationException(
                f"Appointments cannot exceed {settings.max_booking_minutes} minutes",
                details={"duration_minutes": minutes},
            )

    @staticmethod
    def _raw_key(
        student_id: str,
        tutor_id: str,
        subject: str,
        start: datetime,
        end: datetime,
        client_key: Optional[str],
    ) -> str:
        if client_key:
            # Scope caller keys by student so two callers cannot collide
            return request_key("booking", "client", student_id, client_key)
        return request_key(
            "booking", student_id, tutor_id, subject.lower(), start.isoformat(), end.isoformat()
        )

    @staticmethod
    def _schedule_lock_keys(tutor_id: str, start: datetime, end: datetime) -> List[str]:
        """One mutex per UTC day the interval touches; overlapping intervals share one."""
        keys = []
        day = start.date()
        last = (end - timedelta(microseconds=1)).date()
        while day <= last:
            keys.append(f"schedule:{tutor_id}:{day.isoformat()}")
            day += timedelta(days=1)
        return keys

    def _insert_exclusively(
        self,
        student_id: str,
        tutor_id: str,
        subject: str,
        start: datetime,
        end: datetime,
        notes: Optional[str],
        slot_id: Optional[str],
        key: str,
    ) -> Appointment:
        with ExitStack() as stack:
            for lock_key in self._schedule_lock_keys(tutor_id, start, end):
                if not stack.enter_context(self.guard.hold(lock_key)):
                    raise SlotUnavailableException(
                        "This tutor's schedule is busy, please retry",
                        details={"tutor_id": tutor_id},
                    )

            with self.transaction():
                conflicts = self.conflict_checker.check_appointment_conflicts(tutor_id, start, end)
                if conflicts:
                    raise SlotUnavailableException(
                        details={
                            "tutor_id": tutor_id,
                            "start_time": start.isoformat(),
                            "end_time": end.isoformat(),
                            "conflicting_appointment_ids": [c.id for c in conflicts],
                        }
                    )

                hourly_rate, currency = self._rate_snapshot(tutor_id, student_id, subject)
                total_cost = (hourly_rate * hours_between(start, end)).quantize(
                    CENTS, rounding=ROUND_HALF_UP
                )
                return self.repository.create(
                    student_id=student_id,
                    tutor_id=tutor_id,
                    subject=subject,
                    start_time=start,
                    end_time=end,
                    status=AppointmentStatus.SCHEDULED.value,
                    notes=notes,
                    hourly_rate=hourly_rate,
                    currency=currency,
                    total_cost=total_cost,
                    availability_slot_id=slot_id,
                    idempotency_key=key,
                )

    def _rate_snapshot(self, tutor_id: str, student_id: str, subject: str) -> Tuple[Decimal, str]:
        rate = self.rate_repository.resolve_rate(tutor_id, student_id=student_id, subject=subject)
        if rate is None:
            return Decimal(settings.default_hourly_rate), settings.default_currency
        return Decimal(rate.hourly_rate), rate.currency

    def _notify_booked(self, appointment: Appointment) -> None:
        when = appointment.start_time.isoformat()
        payload = {
            "appointment_id": appointment.id,
            "tutor_id": appointment.tutor_id,
            "student_id": appointment.student_id,
            "subject": appointment.subject,
            "start_time": when,
            "end_time": appointment.end_time.isoformat(),
        }
        self.notification_service.emit_all(
            [
                NotificationEvent(
                    user_id=appointment.student_id,
                    kind=NotificationKind.APPOINTMENT_BOOKED,
                    title="Appointment booked",
                    message=f"Your {appointment.subject} session is booked for {when}.",
                    payload=payload,
                ),
                NotificationEvent(
                    user_id=appointment.tutor_id,
                    kind=NotificationKind.APPOINTMENT_BOOKED,
                    title="New appointment",
                    message=f"A student booked a {appointment.subject} session for {when}.",
                    payload=payload,
                ),
            ]
        )
