# backend/app/models/appointment.py
"""
Appointment model for the TutorHub scheduling engine.

Appointments are booked time between a student and a tutor. Start and end
are stored as UTC instants. The rate in effect at booking time is
snapshotted onto the row so later rate changes never rewrite history.

Appointments are never deleted: cancellation and no-shows are statuses,
which keeps ledger and audit history intact.
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
import ulid

from ..core.enums import ACTIVE_APPOINTMENT_STATUSES, AppointmentStatus
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_SQL = ", ".join(f"'{status.value}'" for status in sorted(ACTIVE_APPOINTMENT_STATUSES))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    """Booked session between a student and a tutor."""

    __tablename__ = "appointments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    student_id = Column(String(26), nullable=False, index=True)
    tutor_id = Column(String(26), nullable=False, index=True)
    subject = Column(String(100), nullable=False)

    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)

    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value, index=True)
    notes = Column(Text, nullable=True)

    # Rate snapshot (preserved for history)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    total_cost = Column(Numeric(10, 2), nullable=False)

    availability_slot_id = Column(
        String(26), ForeignKey("availability_slots.id", ondelete="SET NULL"), nullable=True
    )
    idempotency_key = Column(String(64), nullable=True, unique=True)

    # Actual session times recorded on completion
    actual_start_time = Column(UTCDateTime, nullable=True)
    actual_end_time = Column(UTCDateTime, nullable=True)

    # Lifecycle timestamps
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=_utcnow)
    confirmed_at = Column(UTCDateTime, nullable=True)
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    # Cancellation tracking
    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('SCHEDULED', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
            name="ck_appointments_status",
        ),
        CheckConstraint("start_time < end_time", name="ck_appointments_time_order"),
        CheckConstraint("total_cost >= 0", name="ck_appointments_cost_non_negative"),
        CheckConstraint("hourly_rate >= 0", name="ck_appointments_rate_non_negative"),
        # Last line of defence against double booking
        Index(
            "uq_appointments_tutor_start_active",
            "tutor_id",
            "start_time",
            unique=True,
            postgresql_where=text(f"status IN ({_ACTIVE_STATUS_SQL})"),
            sqlite_where=text(f"status IN ({_ACTIVE_STATUS_SQL})"),
        ),
        Index("ix_appointments_tutor_window", "tutor_id", "start_time", "end_time"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = AppointmentStatus.SCHEDULED.value

    def __repr__(self) -> str:
        return (
            f"<Appointment {self.id}: student={self.student_id}, tutor={self.tutor_id}, "
            f"{self.start_time}-{self.end_time}, status={self.status}>"
        )

    @property
    def status_enum(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status_enum in ACTIVE_APPOINTMENT_STATUSES

    @property
    def scheduled_hours(self) -> Decimal:
        seconds = Decimal((self.end_time - self.start_time).total_seconds())
        return seconds / Decimal(3600)

    def cancel(self, cancelled_by_id: str, reason: Optional[str] = None) -> None:
        """Cancel this appointment."""
        self.status = AppointmentStatus.CANCELLED.value
        self.cancelled_at = _utcnow()
        self.cancelled_by_id = cancelled_by_id
        self.cancellation_reason = reason
        logger.info(f"Appointment {self.id} cancelled by user {cancelled_by_id}")
