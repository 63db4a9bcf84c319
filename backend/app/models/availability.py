# backend/app/models/availability.py
"""
Availability models for the TutorHub scheduling engine.

Availability comes in two shapes that share the ``SlotKind`` discriminant:

- RecurringAvailability: a weekly template (day of week plus time range)
  that tutors activate and deactivate directly.
- AvailabilitySlot: a concrete, date-bound slot created either by expanding
  a template or as a one-off entry. Slots referenced by a booking are
  soft-disabled (``is_available = False``) instead of deleted.

``day_of_week`` uses 0 = Sunday through 6 = Saturday.
"""

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    text,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import SlotKind
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecurringAvailability(Base):
    """Weekly availability template for a tutor."""

    __tablename__ = "recurring_availability"

    kind = SlotKind.RECURRING

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=_utcnow)

    slots = relationship("AvailabilitySlot", back_populates="recurring")

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_recurring_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_recurring_time_order"),
        Index("ix_recurring_availability_tutor_day", "tutor_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return (
            f"<RecurringAvailability {self.id}: tutor={self.tutor_id}, "
            f"day={self.day_of_week}, {self.start_time}-{self.end_time}, active={self.is_active}>"
        )

    def deactivate(self) -> None:
        self.is_active = False
        logger.info(f"Recurring availability {self.id} deactivated")


class AvailabilitySlot(Base):
    """Concrete, date-bound availability slot."""

    __tablename__ = "availability_slots"

    kind = SlotKind.DATE_BOUND

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), nullable=False, index=True)
    slot_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    reason = Column(String(255), nullable=True)
    recurring_id = Column(
        String(26), ForeignKey("recurring_availability.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=_utcnow)

    recurring = relationship("RecurringAvailability", back_populates="slots")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_availability_slots_time_order"),
        # At most one available slot per tutor/date/start
        Index(
            "uq_availability_slots_tutor_date_start",
            "tutor_id",
            "slot_date",
            "start_time",
            unique=True,
            postgresql_where=text("is_available = true"),
            sqlite_where=text("is_available = 1"),
        ),
        Index("ix_availability_slots_tutor_date", "tutor_id", "slot_date"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if self.is_available is None:
            self.is_available = True

    def __repr__(self) -> str:
        return (
            f"<AvailabilitySlot {self.id}: tutor={self.tutor_id}, date={self.slot_date}, "
            f"{self.start_time}-{self.end_time}, available={self.is_available}>"
        )

    def disable(self, reason: str | None = None) -> None:
        self.is_available = False
        if reason:
            self.reason = reason
        logger.info(f"Availability slot {self.id} disabled")
