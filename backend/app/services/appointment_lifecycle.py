# backend/app/services/appointment_lifecycle.py
"""
Appointment Lifecycle Service for the TutorHub scheduling engine

Drives appointments through their states:

    SCHEDULED -> CONFIRMED -> IN_PROGRESS -> COMPLETED

CANCELLED and NO_SHOW are reachable from any non-terminal state. Movement
is forward-only and terminal states accept nothing.

Completion is the only transition with side effects beyond the appointment
row: it records a LectureSession, adds the hours to the ledger and may set
the ledger's reminder flag, all in the same transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import AppointmentStatus, NotificationKind
from ..core.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.notification_events import NotificationEvent
from ..idempotency.guard import IdempotencyGuard
from ..models.appointment import Appointment
from ..principal import ActorPrincipal
from ..repositories import RepositoryFactory
from ..repositories.appointment_repository import AppointmentRepository
from .base import BaseService
from .ledger_service import LedgerService, SessionRecord, quantize_hours
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

S = AppointmentStatus

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.NO_SHOW}),
    S.CONFIRMED: frozenset({S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.NO_SHOW}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED, S.NO_SHOW}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class CompletionResult:
    appointment: Appointment
    session_record: SessionRecord

    @property
    def reminder_sent(self) -> bool:
        return self.session_record.reminder_sent


class AppointmentLifecycleService(BaseService):
    """Service for appointment status transitions."""

    def __init__(
        self,
        db: Session,
        guard: Optional[IdempotencyGuard] = None,
        ledger_service: Optional[LedgerService] = None,
        notification_service: Optional[NotificationService] = None,
        repository: Optional[AppointmentRepository] = None,
    ):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.guard = guard
        self.repository = repository or RepositoryFactory.create_appointment_repository(db)
        self.notification_service = notification_service or NotificationService(db)
        self.ledger_service = ledger_service or LedgerService(
            db, notification_service=self.notification_service
        )

    @BaseService.measure_operation("confirm_appointment")
    def confirm(self, actor: ActorPrincipal, appointment_id: str) -> Appointment:
        with self.transaction():
            appointment = self._load_for_transition(actor, appointment_id, S.CONFIRMED)
            appointment.status = S.CONFIRMED.value
            appointment.confirmed_at = utc_now()
            self.repository.flush()

        self._log_transition(appointment, actor)
        self.notification_service.emit(
            self._event(
                appointment,
                appointment.student_id,
                NotificationKind.APPOINTMENT_CONFIRMED,
                "Appointment confirmed",
                f"Your tutor confirmed your {appointment.subject} session.",
            )
        )
        return appointment

    @BaseService.measure_operation("start_appointment")
    def start(
        self,
        actor: ActorPrincipal,
        appointment_id: str,
        actual_start_time: Optional[datetime] = None,
    ) -> Appointment:
        with self.transaction():
            appointment = self._load_for_transition(actor, appointment_id, S.IN_PROGRESS)
            now = utc_now()
            appointment.status = S.IN_PROGRESS.value
            appointment.started_at = now
            appointment.actual_start_time = (
                ensure_utc(actual_start_time) if actual_start_time else now
            )
            self.repository.flush()

        self._log_transition(appointment, actor)
        self.notification_service.emit(
            self._event(
                appointment,
                appointment.student_id,
                NotificationKind.APPOINTMENT_STARTED,
                "Session started",
                f"Your {appointment.subject} session has started.",
            )
        )
        return appointment

    @BaseService.measure_operation("complete_appointment")
    def complete(
        self,
        actor: ActorPrincipal,
        appointment_id: str,
        actual_start_time: Optional[datetime] = None,
        actual_end_time: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> CompletionResult:
        """
        Complete an appointment and bill its hours.

        Duration comes from the actual start/end pair when both are known,
        otherwise from the scheduled interval.

        Raises:
            InvalidTransitionException: Appointment is already terminal
            ValidationException: Duration is not positive
        """
        with self.transaction():
            appointment = self._load_for_transition(actor, appointment_id, S.COMPLETED)

            started = actual_start_time or appointment.actual_start_time
            ended = actual_end_time or appointment.actual_end_time
            if started is not None and ended is not None:
                started, ended = ensure_utc(started), ensure_utc(ended)
                hours = Decimal(str((ended - started).total_seconds())) / Decimal(3600)
            else:
                hours = appointment.scheduled_hours
            hours = quantize_hours(hours)
            if hours <= 0:
                raise ValidationException(
                    "Session duration must be positive",
                    details={
                        "actual_start_time": started.isoformat() if started else None,
                        "actual_end_time": ended.isoformat() if ended else None,
                    },
                )

            now = utc_now()
            appointment.status = S.COMPLETED.value
            appointment.completed_at = now
            appointment.actual_start_time = started
            appointment.actual_end_time = ended

            record = self.ledger_service.record_session(
                appointment.student_id,
                appointment.tutor_id,
                appointment.subject,
                hours,
                appointment_id=appointment.id,
                actual_start_time=started,
                actual_end_time=ended,
                notes=notes,
            )
            record.reminder_sent = self.ledger_service.evaluate_reminder(record.ledger)
            self.repository.flush()

        self.logger.info(
            "appointment_completed",
            extra={
                "appointment_id": appointment.id,
                "ledger_id": record.ledger.id,
                "hours": str(hours),
                "unpaid_hours": str(record.unpaid_hours),
                "reminder_sent": record.reminder_sent,
            },
        )

        events: List[NotificationEvent] = [
            self._event(
                appointment,
                appointment.student_id,
                NotificationKind.APPOINTMENT_COMPLETED,
                "Session completed",
                f"Your {appointment.subject} session is complete: {hours} hours recorded.",
                ledger_id=record.ledger.id,
                hours=str(hours),
            )
        ]
        if record.reminder_sent:
            events.extend(self.ledger_service.reminder_events(record.ledger))
        self.notification_service.emit_all(events)

        return CompletionResult(appointment=appointment, session_record=record)

    @BaseService.measure_operation("cancel_appointment")
    def cancel(
        self,
        actor: ActorPrincipal,
        appointment_id: str,
        reason: Optional[str] = None,
    ) -> Appointment:
        """
        Cancel an appointment. Either party may cancel.

        The time range is freed for future bookings and the idempotency
        claim is released so the same request can be made again.
        """
        with self.transaction():
            appointment = self._load_for_transition(
                actor, appointment_id, S.CANCELLED, allow_student=True
            )
            released_key = appointment.idempotency_key
            appointment.cancel(actor.actor_id, reason)
            appointment.idempotency_key = None
            self.repository.flush()

        if released_key and self.guard is not None:
            self.guard.release(released_key)

        self._log_transition(appointment, actor, reason=reason)

        if actor.actor_id == appointment.student_id:
            recipients = [appointment.tutor_id]
        elif actor.actor_id == appointment.tutor_id:
            recipients = [appointment.student_id]
        else:
            recipients = [appointment.student_id, appointment.tutor_id]
        self.notification_service.emit_all(
            self._event(
                appointment,
                recipient,
                NotificationKind.APPOINTMENT_CANCELLED,
                "Appointment cancelled",
                f"The {appointment.subject} session on "
                f"{appointment.start_time.isoformat()} was cancelled.",
                reason=reason,
            )
            for recipient in recipients
        )
        return appointment

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(self, actor: ActorPrincipal, appointment_id: str) -> Appointment:
        with self.transaction():
            appointment = self._load_for_transition(actor, appointment_id, S.NO_SHOW)
            appointment.status = S.NO_SHOW.value
            self.repository.flush()

        self._log_transition(appointment, actor)
        self.notification_service.emit(
            self._event(
                appointment,
                appointment.student_id,
                NotificationKind.APPOINTMENT_NO_SHOW,
                "Missed session",
                f"You were marked as a no-show for your {appointment.subject} session.",
            )
        )
        return appointment

    # Internals

    def _load_for_transition(
        self,
        actor: ActorPrincipal,
        appointment_id: str,
        target: AppointmentStatus,
        allow_student: bool = False,
    ) -> Appointment:
        appointment = self.repository.get_by_id_for_update(appointment_id)
        if not appointment:
            raise NotFoundException("Appointment not found")

        if allow_student:
            actor.require_party(appointment.tutor_id, appointment.student_id)
        elif not actor.acts_for_tutor(appointment.tutor_id):
            raise ForbiddenException(
                f"Only the tutor can mark an appointment {target.value.lower()}",
                details={"appointment_id": appointment_id},
            )

        current = appointment.status_enum
        if not can_transition(current, target):
            raise InvalidTransitionException(current.value, target.value)
        return appointment

    def _log_transition(self, appointment: Appointment, actor: ActorPrincipal, **context) -> None:
        self.log_operation(
            "appointment_transition",
            appointment_id=appointment.id,
            status=appointment.status,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            **context,
        )

    @staticmethod
    def _event(
        appointment: Appointment,
        recipient: str,
        kind: NotificationKind,
        title: str,
        message: str,
        **extra,
    ) -> NotificationEvent:
        payload = {
            "appointment_id": appointment.id,
            "tutor_id": appointment.tutor_id,
            "student_id": appointment.student_id,
            "subject": appointment.subject,
            "status": appointment.status,
            "start_time": appointment.start_time.isoformat(),
        }
        payload.update(extra)
        return NotificationEvent(
            user_id=recipient, kind=kind, title=title, message=message, payload=payload
        )
