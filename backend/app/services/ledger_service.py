# backend/app/services/ledger_service.py
"""
Ledger Service for the TutorHub scheduling engine

Keeps the running balance of taught vs. paid hours per
(student, tutor, subject) triple.

Accounting rules:
- Recording a session adds its hours to both total and unpaid hours,
  creating the ledger lazily on first use.
- A reminder is due once unpaid hours reach one hour below the payment
  interval, and only once per payment cycle.
- Applying a payment decrements unpaid hours, clamped at zero. Excess
  hours are absorbed, never carried as credit.
- Paid sessions are settled oldest first.

Every read-modify-write on a ledger locks its row first. Notifications go
out after commit and never affect the result.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import PAYMENT_REMINDER_LEAD_HOURS
from ..core.enums import NotificationKind, PaymentStatus
from ..core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.notification_events import NotificationEvent
from ..models.ledger import LectureHours, LectureSession
from ..models.payment import Payment
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import ActorPrincipal
from ..repositories import RepositoryFactory
from ..repositories.ledger_repository import LedgerRepository
from ..repositories.payment_repository import PaymentRepository
from ..repositories.rate_repository import RateRepository
from .base import BaseService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

HOURS_QUANTUM = Decimal("0.01")
ZERO = Decimal("0")

# Statuses a payment may move to from each non-final status
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.OVERDUE, PaymentStatus.CANCELLED},
    PaymentStatus.OVERDUE: {PaymentStatus.PAID, PaymentStatus.CANCELLED},
    PaymentStatus.PAID: set(),
    PaymentStatus.CANCELLED: set(),
}


def quantize_hours(value: Decimal) -> Decimal:
    return Decimal(value).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass
class SessionRecord:
    """Outcome of adding taught hours to a ledger."""

    ledger: LectureHours
    session: LectureSession
    unpaid_hours: Decimal
    created_ledger: bool = False
    reminder_sent: bool = False


@dataclass
class PaymentApplication:
    payment: Payment
    ledger: LectureHours
    hours_applied: Decimal
    hours_absorbed: Decimal
    settled_session_ids: List[str] = field(default_factory=list)


class LedgerService(BaseService):
    """
    Service for lecture-hour ledgers, sessions and payments.

    ``record_session`` and ``evaluate_reminder`` join the caller's
    transaction so appointment completion can run as one unit. The other
    public operations own their transaction.
    """

    def __init__(
        self,
        db: Session,
        notification_service: Optional[NotificationService] = None,
        repository: Optional[LedgerRepository] = None,
        payment_repository: Optional[PaymentRepository] = None,
        rate_repository: Optional[RateRepository] = None,
    ):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.repository = repository or RepositoryFactory.create_ledger_repository(db)
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self.rate_repository = rate_repository or RepositoryFactory.create_rate_repository(db)
        self.notification_service = notification_service or NotificationService(db)

    # Accounting primitives

    def record_session(
        self,
        student_id: str,
        tutor_id: str,
        subject: str,
        hours: Decimal,
        appointment_id: Optional[str] = None,
        actual_start_time: Optional[datetime] = None,
        actual_end_time: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> SessionRecord:
        """
        Add taught hours to the ledger for a triple.

        Creates the ledger with total = unpaid = hours when none exists.
        Does not commit.
        """
        hours = quantize_hours(hours)
        if hours <= ZERO:
            raise ValidationException(
                "Session duration must be positive", details={"hours": str(hours)}
            )

        ledger, created = self.repository.get_or_create_for_update(
            student_id,
            tutor_id,
            subject,
            total_hours=ZERO,
            unpaid_hours=ZERO,
            payment_interval=settings.default_payment_interval,
            reminder_sent=False,
        )
        ledger.total_hours = Decimal(ledger.total_hours or ZERO) + hours
        ledger.unpaid_hours = Decimal(ledger.unpaid_hours or ZERO) + hours
        ledger.last_session_date = ensure_utc(actual_end_time) if actual_end_time else utc_now()

        session = self.repository.create_session(
            lecture_hours_id=ledger.id,
            appointment_id=appointment_id,
            duration=hours,
            actual_start_time=actual_start_time,
            actual_end_time=actual_end_time,
            notes=notes,
            paid=False,
        )
        self.repository.flush()
        return SessionRecord(
            ledger=ledger,
            session=session,
            unpaid_hours=Decimal(ledger.unpaid_hours),
            created_ledger=created,
        )

    @staticmethod
    def reminder_due(ledger: LectureHours) -> bool:
        """True within one hour of the billing threshold, once per payment cycle."""
        if ledger.reminder_sent:
            return False
        threshold = Decimal(ledger.payment_interval) - PAYMENT_REMINDER_LEAD_HOURS
        return Decimal(ledger.unpaid_hours) >= threshold

    def evaluate_reminder(self, ledger: LectureHours, trigger: str = "session") -> bool:
        """Set the reminder flag if a reminder is due. Does not commit."""
        if not self.reminder_due(ledger):
            return False
        ledger.reminder_sent = True
        prometheus_metrics.record_ledger_reminder(trigger)
        self.logger.info(
            "ledger_reminder_due",
            extra={
                "ledger_id": ledger.id,
                "unpaid_hours": str(ledger.unpaid_hours),
                "payment_interval": ledger.payment_interval,
            },
        )
        return True

    def reminder_events(self, ledger: LectureHours) -> List[NotificationEvent]:
        payload = self._ledger_payload(ledger)
        unpaid = quantize_hours(ledger.unpaid_hours)
        return [
            NotificationEvent(
                user_id=ledger.student_id,
                kind=NotificationKind.PAYMENT_REMINDER,
                title="Payment coming up",
                message=(
                    f"You have {unpaid} unpaid hours of {ledger.subject}. "
                    f"Payment is due every {ledger.payment_interval} hours."
                ),
                payload=payload,
            ),
            NotificationEvent(
                user_id=ledger.tutor_id,
                kind=NotificationKind.PAYMENT_REMINDER,
                title="Student approaching payment",
                message=f"Your student has {unpaid} unpaid hours of {ledger.subject}.",
                payload=payload,
            ),
        ]

    # Sessions

    @BaseService.measure_operation("log_session")
    def log_session(
        self,
        actor: ActorPrincipal,
        student_id: str,
        tutor_id: str,
        subject: str,
        hours: Decimal,
        notes: Optional[str] = None,
    ) -> SessionRecord:
        """Record hours for a triple outside the appointment flow."""
        actor.require_tutor(tutor_id, "record sessions")
        subject = (subject or "").strip()
        if not subject:
            raise ValidationException("Subject is required")

        with self.transaction():
            record = self.record_session(student_id, tutor_id, subject, hours, notes=notes)
            record.reminder_sent = self.evaluate_reminder(record.ledger)

        self._notify_hours_recorded(record)
        return record

    @BaseService.measure_operation("record_manual_session")
    def record_manual_session(
        self,
        actor: ActorPrincipal,
        ledger_id: str,
        hours: Decimal,
        notes: Optional[str] = None,
    ) -> SessionRecord:
        """
        Back-date hours onto an existing ledger.

        Same accounting path as a completed appointment, but the session is
        not linked to any appointment.
        """
        ledger = self._get_ledger(ledger_id)
        actor.require_tutor(ledger.tutor_id, "record sessions")

        with self.transaction():
            record = self.record_session(
                ledger.student_id, ledger.tutor_id, ledger.subject, hours, notes=notes
            )
            record.reminder_sent = self.evaluate_reminder(record.ledger, trigger="manual")

        self.log_operation(
            "record_manual_session", ledger_id=ledger_id, hours=str(record.session.duration)
        )
        self._notify_hours_recorded(record)
        return record

    # Payments

    @BaseService.measure_operation("apply_payment")
    def apply_payment(
        self,
        actor: ActorPrincipal,
        ledger_id: str,
        hours_included: Decimal,
        amount: Decimal,
        currency: Optional[str] = None,
        payment_method: Optional[str] = None,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PaymentApplication:
        """Record a received payment and apply it to the ledger."""
        hours_included, amount = self._validate_payment_figures(hours_included, amount)

        with self.transaction():
            ledger = self._get_ledger(ledger_id, for_update=True)
            actor.require_tutor(ledger.tutor_id, "apply payments")
            payment = self.payment_repository.create(
                lecture_hours_id=ledger.id,
                amount=amount,
                currency=(currency or settings.default_currency).upper(),
                hours_included=hours_included,
                status=PaymentStatus.PAID.value,
                paid_date=utc_now(),
                payment_method=payment_method,
                transaction_id=transaction_id,
                notes=notes,
            )
            application = self._apply_to_ledger(ledger, payment)

        self._notify_payment_received(application)
        return application

    @BaseService.measure_operation("schedule_payment")
    def schedule_payment(
        self,
        actor: ActorPrincipal,
        ledger_id: str,
        hours_included: Decimal,
        amount: Decimal,
        due_date: Optional[datetime] = None,
        currency: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        """Create a PENDING payment; the ledger is untouched until it is paid."""
        hours_included, amount = self._validate_payment_figures(hours_included, amount)
        ledger = self._get_ledger(ledger_id)
        actor.require_tutor(ledger.tutor_id, "schedule payments")

        with self.transaction():
            payment = self.payment_repository.create(
                lecture_hours_id=ledger.id,
                amount=amount,
                currency=(currency or settings.default_currency).upper(),
                hours_included=hours_included,
                status=PaymentStatus.PENDING.value,
                due_date=ensure_utc(due_date) if due_date else None,
                notes=notes,
            )

        self.notification_service.emit(
            NotificationEvent(
                user_id=ledger.student_id,
                kind=NotificationKind.PAYMENT_SCHEDULED,
                title="Payment scheduled",
                message=(
                    f"A payment of {payment.amount} {payment.currency} for "
                    f"{payment.hours_included} hours of {ledger.subject} is scheduled."
                ),
                payload=self._payment_payload(payment, ledger),
            )
        )
        return payment

    @BaseService.measure_operation("update_payment_status")
    def update_payment_status(
        self,
        actor: ActorPrincipal,
        payment_id: str,
        status: PaymentStatus,
        payment_method: Optional[str] = None,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        """
        Move a payment through its states.

        PENDING or OVERDUE to PAID applies the payment to the ledger.
        PAID and CANCELLED are final.
        """
        status = PaymentStatus(status)
        application: Optional[PaymentApplication] = None

        with self.transaction():
            payment = self.payment_repository.get_by_id_for_update(payment_id)
            if not payment:
                raise NotFoundException("Payment not found")
            ledger = self._get_ledger(payment.lecture_hours_id, for_update=True)
            actor.require_tutor(ledger.tutor_id, "update payments")

            current = payment.status_enum
            if status not in PAYMENT_TRANSITIONS[current]:
                raise ConflictException(
                    f"Cannot change payment from {current.value} to {status.value}",
                    code="INVALID_PAYMENT_TRANSITION",
                    details={"current_status": current.value, "target_status": status.value},
                )

            payment.status = status.value
            if payment_method is not None:
                payment.payment_method = payment_method
            if transaction_id is not None:
                payment.transaction_id = transaction_id
            if notes is not None:
                payment.notes = notes
            if status == PaymentStatus.PAID:
                payment.paid_date = utc_now()
                application = self._apply_to_ledger(ledger, payment)
            self.payment_repository.flush()

        self.log_operation(
            "update_payment_status",
            payment_id=payment_id,
            previous_status=current.value,
            new_status=status.value,
        )
        if application is not None:
            self._notify_payment_received(application)
        return payment

    def mark_payment_received(
        self,
        actor: ActorPrincipal,
        payment_id: str,
        payment_method: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Payment:
        return self.update_payment_status(
            actor,
            payment_id,
            PaymentStatus.PAID,
            payment_method=payment_method,
            transaction_id=transaction_id,
        )

    @BaseService.measure_operation("send_payment_reminder")
    def send_payment_reminder(self, actor: ActorPrincipal, payment_id: str) -> Payment:
        with self.transaction():
            payment = self.payment_repository.get_by_id_for_update(payment_id)
            if not payment:
                raise NotFoundException("Payment not found")
            ledger = self._get_ledger(payment.lecture_hours_id)
            actor.require_tutor(ledger.tutor_id, "send payment reminders")
            if payment.status_enum not in (PaymentStatus.PENDING, PaymentStatus.OVERDUE):
                raise ConflictException(
                    "Reminders can only be sent for outstanding payments",
                    code="PAYMENT_NOT_OUTSTANDING",
                    details={"status": payment.status},
                )
            payment.reminders_sent = (payment.reminders_sent or 0) + 1
            payment.last_reminder_at = utc_now()
            self.payment_repository.flush()

        prometheus_metrics.record_ledger_reminder("payment")
        payload = self._payment_payload(payment, ledger)
        due = payment.due_date.date().isoformat() if payment.due_date else "now"
        self.notification_service.emit_all(
            [
                NotificationEvent(
                    user_id=ledger.student_id,
                    kind=NotificationKind.PAYMENT_REMINDER,
                    title="Payment reminder",
                    message=(
                        f"Your payment of {payment.amount} {payment.currency} for "
                        f"{ledger.subject} is due {due}."
                    ),
                    payload=payload,
                ),
                NotificationEvent(
                    user_id=ledger.tutor_id,
                    kind=NotificationKind.PAYMENT_REMINDER,
                    title="Reminder sent",
                    message=f"A payment reminder was sent to your {ledger.subject} student.",
                    payload=payload,
                ),
            ]
        )
        return payment

    @BaseService.measure_operation("settle_student")
    def settle_student(
        self,
        actor: ActorPrincipal,
        tutor_id: str,
        student_id: str,
        reason: Optional[str] = None,
    ) -> List[PaymentApplication]:
        """Mark every outstanding ledger between a tutor and a student as paid."""
        actor.require_tutor(tutor_id, "settle student balances")
        applications: List[PaymentApplication] = []

        with self.transaction():
            ledgers = self.repository.get_outstanding_for_pair_for_update(tutor_id, student_id)
            for ledger in ledgers:
                hours = quantize_hours(ledger.unpaid_hours)
                rate, currency = self._rate_for(ledger)
                payment = self.payment_repository.create(
                    lecture_hours_id=ledger.id,
                    amount=(rate * hours).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP),
                    currency=currency,
                    hours_included=hours,
                    status=PaymentStatus.PAID.value,
                    paid_date=utc_now(),
                    payment_method="manual",
                    notes=reason,
                )
                applications.append(self._apply_to_ledger(ledger, payment))

        self.log_operation(
            "settle_student",
            tutor_id=tutor_id,
            student_id=student_id,
            ledgers_settled=len(applications),
        )
        for application in applications:
            self._notify_payment_received(application)
        return applications

    # Ledger settings and queries

    @BaseService.measure_operation("update_payment_interval")
    def update_payment_interval(
        self, actor: ActorPrincipal, ledger_id: str, payment_interval: int
    ) -> LectureHours:
        """
        Change the reminder threshold.

        Only future evaluations see the new interval; an existing balance
        above it does not fire a reminder here.
        """
        if payment_interval is None or int(payment_interval) <= 0:
            raise ValidationException(
                "Payment interval must be a positive number of hours",
                details={"payment_interval": payment_interval},
            )

        with self.transaction():
            ledger = self._get_ledger(ledger_id, for_update=True)
            actor.require_tutor(ledger.tutor_id, "change the payment interval")
            previous = ledger.payment_interval
            ledger.payment_interval = int(payment_interval)
            self.repository.flush()

        self.log_operation(
            "update_payment_interval",
            ledger_id=ledger_id,
            previous_interval=previous,
            new_interval=ledger.payment_interval,
        )
        self.notification_service.emit(
            NotificationEvent(
                user_id=ledger.student_id,
                kind=NotificationKind.PAYMENT_INTERVAL_CHANGED,
                title="Payment schedule updated",
                message=(
                    f"Payments for {ledger.subject} are now due every "
                    f"{ledger.payment_interval} hours."
                ),
                payload=self._ledger_payload(ledger),
            )
        )
        return ledger

    def get_ledger(self, actor: ActorPrincipal, ledger_id: str) -> LectureHours:
        ledger = self._get_ledger(ledger_id)
        actor.require_party(ledger.tutor_id, ledger.student_id)
        return ledger

    @BaseService.measure_operation("list_ledgers")
    def list_ledgers(
        self,
        actor: ActorPrincipal,
        tutor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        outstanding_only: bool = False,
    ) -> List[LectureHours]:
        if actor.is_tutor:
            tutor_id = actor.actor_id
        elif actor.is_student:
            student_id = actor.actor_id
        return self.repository.list_ledgers(
            tutor_id=tutor_id, student_id=student_id, outstanding_only=outstanding_only
        )

    def list_sessions(self, actor: ActorPrincipal, ledger_id: str) -> List[LectureSession]:
        ledger = self.get_ledger(actor, ledger_id)
        return self.repository.list_sessions(ledger.id)

    def list_payments(
        self, actor: ActorPrincipal, ledger_id: str, status: Optional[PaymentStatus] = None
    ) -> List[Payment]:
        ledger = self.get_ledger(actor, ledger_id)
        return self.payment_repository.list_for_ledger(ledger.id, status=status)

    @BaseService.measure_operation("pending_reminders")
    def pending_reminders(
        self, actor: ActorPrincipal, tutor_id: Optional[str] = None
    ) -> List[LectureHours]:
        """Ledgers inside the one-hour window before their threshold, not yet reminded."""
        if actor.is_student:
            raise ForbiddenException("Only tutors can view pending reminders")
        if actor.is_tutor:
            tutor_id = actor.actor_id
        return self.repository.get_pending_reminders(tutor_id=tutor_id)

    # Internals

    def _get_ledger(self, ledger_id: str, for_update: bool = False) -> LectureHours:
        if for_update:
            ledger = self.repository.get_by_id_for_update(ledger_id)
        else:
            ledger = self.repository.get_by_id(ledger_id)
        if not ledger:
            raise NotFoundException("Ledger not found")
        return ledger

    @staticmethod
    def _validate_payment_figures(hours: Decimal, amount: Decimal) -> Tuple[Decimal, Decimal]:
        hours = quantize_hours(hours)
        amount = Decimal(amount).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)
        if hours <= ZERO:
            raise ValidationException(
                "Payment must include a positive number of hours",
                details={"hours_included": str(hours)},
            )
        if amount < ZERO:
            raise ValidationException(
                "Payment amount cannot be negative", details={"amount": str(amount)}
            )
        return hours, amount

    def _apply_to_ledger(self, ledger: LectureHours, payment: Payment) -> PaymentApplication:
        """Decrement unpaid hours (clamped), settle sessions oldest first, reset the reminder."""
        hours = quantize_hours(payment.hours_included)
        unpaid = Decimal(ledger.unpaid_hours)
        applied = min(hours, unpaid)
        absorbed = hours - applied

        ledger.unpaid_hours = unpaid - applied
        ledger.reminder_sent = False
        settled = self._settle_sessions(ledger, applied, cleared=ledger.unpaid_hours == ZERO)
        self.repository.flush()

        if absorbed > ZERO:
            self.logger.info(
                "ledger_overpayment_absorbed",
                extra={
                    "ledger_id": ledger.id,
                    "payment_id": payment.id,
                    "hours_absorbed": str(absorbed),
                },
            )
        return PaymentApplication(
            payment=payment,
            ledger=ledger,
            hours_applied=applied,
            hours_absorbed=absorbed,
            settled_session_ids=settled,
        )

    def _settle_sessions(self, ledger: LectureHours, hours: Decimal, cleared: bool) -> List[str]:
        settled = []
        remaining = hours
        for session in self.repository.get_unpaid_sessions(ledger.id):
            duration = Decimal(session.duration)
            if not cleared:
                if duration > remaining:
                    break
                remaining -= duration
            session.paid = True
            settled.append(session.id)
        return settled

    def _rate_for(self, ledger: LectureHours) -> Tuple[Decimal, str]:
        rate = self.rate_repository.resolve_rate(
            ledger.tutor_id, student_id=ledger.student_id, subject=ledger.subject
        )
        if rate is None:
            return Decimal(settings.default_hourly_rate), settings.default_currency
        return Decimal(rate.hourly_rate), rate.currency

    def _notify_hours_recorded(self, record: SessionRecord) -> None:
        ledger = record.ledger
        events = [
            NotificationEvent(
                user_id=ledger.student_id,
                kind=NotificationKind.HOURS_RECORDED,
                title="Hours recorded",
                message=(
                    f"{record.session.duration} hours of {ledger.subject} were recorded. "
                    f"Unpaid balance: {quantize_hours(record.unpaid_hours)} hours."
                ),
                payload={**self._ledger_payload(ledger), "session_id": record.session.id},
            )
        ]
        if record.reminder_sent:
            events.extend(self.reminder_events(ledger))
        self.notification_service.emit_all(events)

    def _notify_payment_received(self, application: PaymentApplication) -> None:
        payment, ledger = application.payment, application.ledger
        payload = {
            **self._payment_payload(payment, ledger),
            "hours_applied": str(application.hours_applied),
            "settled_session_ids": application.settled_session_ids,
        }
        self.notification_service.emit_all(
            [
                NotificationEvent(
                    user_id=ledger.student_id,
                    kind=NotificationKind.PAYMENT_RECEIVED,
                    title="Payment received",
                    message=(
                        f"Thanks! {payment.amount} {payment.currency} covering "
                        f"{payment.hours_included} hours of {ledger.subject} was received."
                    ),
                    payload=payload,
                ),
                NotificationEvent(
                    user_id=ledger.tutor_id,
                    kind=NotificationKind.PAYMENT_RECEIVED,
                    title="Payment recorded",
                    message=(
                        f"Payment of {payment.amount} {payment.currency} recorded. "
                        f"Unpaid balance: {quantize_hours(ledger.unpaid_hours)} hours."
                    ),
                    payload=payload,
                ),
            ]
        )

    @staticmethod
    def _ledger_payload(ledger: LectureHours) -> dict:
        return {
            "ledger_id": ledger.id,
            "student_id": ledger.student_id,
            "tutor_id": ledger.tutor_id,
            "subject": ledger.subject,
            "total_hours": str(quantize_hours(ledger.total_hours)),
            "unpaid_hours": str(quantize_hours(ledger.unpaid_hours)),
            "payment_interval": ledger.payment_interval,
        }

    @staticmethod
    def _payment_payload(payment: Payment, ledger: LectureHours) -> dict:
        return {
            "payment_id": payment.id,
            "ledger_id": ledger.id,
            "amount": str(payment.amount),
            "currency": payment.currency,
            "hours_included": str(payment.hours_included),
            "status": payment.status,
        }
