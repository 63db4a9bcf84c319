# backend/app/models/rate.py
"""
Tutor rate card.

Rows are maintained by the rate-management collaborator. The scheduling
engine only reads them to snapshot the applicable rate onto an appointment.
A row with no student and no subject is the tutor's default rate.
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Index, Numeric, String
import ulid

from ..database import Base
from .types import UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TutorRate(Base):
    """Hourly rate a tutor charges, optionally per student and/or subject."""

    __tablename__ = "tutor_rates"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), nullable=False, index=True)
    student_id = Column(String(26), nullable=True)
    subject = Column(String(100), nullable=True)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("hourly_rate >= 0", name="ck_tutor_rates_non_negative"),
        Index("ix_tutor_rates_lookup", "tutor_id", "student_id", "subject"),
    )

    def __repr__(self) -> str:
        return (
            f"<TutorRate {self.id}: tutor={self.tutor_id}, student={self.student_id}, "
            f"subject={self.subject}, rate={self.hourly_rate} {self.currency}>"
        )
