# backend/app/models/ledger.py
"""
Lecture-hour ledger models.

LectureHours is the running balance of taught versus paid hours for one
(student, tutor, subject) triple. LectureSession rows are the append-only
history of time actually taught; only their ``paid`` flag ever changes.
"""

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.constants import DEFAULT_PAYMENT_INTERVAL_HOURS
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LectureHours(Base):
    """Hour/payment ledger for a (student, tutor, subject) triple."""

    __tablename__ = "lecture_hours"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    student_id = Column(String(26), nullable=False, index=True)
    tutor_id = Column(String(26), nullable=False, index=True)
    subject = Column(String(100), nullable=False)

    total_hours = Column(Numeric(10, 2), nullable=False, default=0)
    unpaid_hours = Column(Numeric(10, 2), nullable=False, default=0)
    payment_interval = Column(Integer, nullable=False, default=DEFAULT_PAYMENT_INTERVAL_HOURS)
    last_session_date = Column(UTCDateTime, nullable=True)
    reminder_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=_utcnow)

    sessions = relationship(
        "LectureSession",
        back_populates="ledger",
        order_by="LectureSession.created_at",
    )
    payments = relationship(
        "Payment",
        back_populates="ledger",
        order_by="Payment.created_at",
    )

    __table_args__ = (
        UniqueConstraint("student_id", "tutor_id", "subject", name="uq_lecture_hours_triple"),
        CheckConstraint("unpaid_hours >= 0", name="ck_lecture_hours_unpaid_non_negative"),
        CheckConstraint("unpaid_hours <= total_hours", name="ck_lecture_hours_unpaid_le_total"),
        CheckConstraint("payment_interval > 0", name="ck_lecture_hours_interval_positive"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if self.reminder_sent is None:
            self.reminder_sent = False

    def __repr__(self) -> str:
        return (
            f"<LectureHours {self.id}: student={self.student_id}, tutor={self.tutor_id}, "
            f"subject={self.subject}, unpaid={self.unpaid_hours}/{self.total_hours}>"
        )


class LectureSession(Base):
    """One historical record of time actually taught."""

    __tablename__ = "lecture_sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    lecture_hours_id = Column(
        String(26), ForeignKey("lecture_hours.id", ondelete="CASCADE"), nullable=False
    )
    # Null for manual (back-dated) entries
    appointment_id = Column(
        String(26), ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    duration = Column(Numeric(10, 2), nullable=False)
    actual_start_time = Column(UTCDateTime, nullable=True)
    actual_end_time = Column(UTCDateTime, nullable=True)
    notes = Column(Text, nullable=True)
    paid = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    ledger = relationship("LectureHours", back_populates="sessions")

    __table_args__ = (
        CheckConstraint("duration > 0", name="ck_lecture_sessions_duration_positive"),
        Index("ix_lecture_sessions_ledger_paid", "lecture_hours_id", "paid", "created_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if self.paid is None:
            self.paid = False
