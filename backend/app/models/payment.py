# backend/app/models/payment.py
"""
Payment records reconciled against a lecture-hour ledger.

Amounts are decided elsewhere; this table only records and reconciles them.
"""

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import PaymentStatus
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    """Payment against a ledger."""

    __tablename__ = "payments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    lecture_hours_id = Column(
        String(26), ForeignKey("lecture_hours.id", ondelete="CASCADE"), nullable=False, index=True
    )

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    hours_included = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    due_date = Column(UTCDateTime, nullable=True)
    paid_date = Column(UTCDateTime, nullable=True)
    payment_method = Column(String(50), nullable=True)
    transaction_id = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    reminders_sent = Column(Integer, nullable=False, default=0)
    last_reminder_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=_utcnow)

    ledger = relationship("LectureHours", back_populates="payments")

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PAID', 'OVERDUE', 'CANCELLED')",
            name="ck_payments_status",
        ),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        CheckConstraint("hours_included >= 0", name="ck_payments_hours_non_negative"),
        Index("ix_payments_ledger_status", "lecture_hours_id", "status"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = PaymentStatus.PENDING.value
        if self.reminders_sent is None:
            self.reminders_sent = 0

    def __repr__(self) -> str:
        return (
            f"<Payment {self.id}: ledger={self.lecture_hours_id}, amount={self.amount} "
            f"{self.currency}, hours={self.hours_included}, status={self.status}>"
        )

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)
