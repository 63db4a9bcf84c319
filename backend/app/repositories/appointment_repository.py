# backend/app/repositories/appointment_repository.py
"""
Appointment Repository for the TutorHub scheduling engine

Fetches appointment candidate sets for conflict checks and serves the
listing queries used by the API. Only non-terminal appointments take
part in conflict checks.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import ACTIVE_APPOINTMENT_STATUSES, AppointmentStatus
from ..core.exceptions import RepositoryException
from ..models.appointment import Appointment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_APPOINTMENT_STATUSES]


class AppointmentRepository(BaseRepository[Appointment]):
    """Repository for appointment data access."""

    def __init__(self, db: Session):
        super().__init__(db, Appointment)
        self.logger = logging.getLogger(__name__)

    def get_active_for_tutor_between(
        self,
        tutor_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> List[Appointment]:
        """
        Non-terminal appointments for a tutor touching a time window.

        The window is a coarse pre-filter; the exact overlap decision is left
        to the conflict checker.
        """
        try:
            query = self.db.query(Appointment).filter(
                Appointment.tutor_id == tutor_id,
                Appointment.status.in_(_ACTIVE_STATUS_VALUES),
                Appointment.start_time < window_end,
                Appointment.end_time > window_start,
            )
            if exclude_appointment_id:
                query = query.filter(Appointment.id != exclude_appointment_id)
            return query.order_by(Appointment.start_time).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting appointments for conflict check: {str(e)}")
            raise RepositoryException(f"Failed to get appointments: {str(e)}")

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Appointment]:
        return self.find_one_by(idempotency_key=idempotency_key)

    def has_any_for_slot(self, slot_id: str) -> bool:
        """True once any appointment, in any status, has booked the slot."""
        return self.count(availability_slot_id=slot_id) > 0

    def list_appointments(
        self,
        tutor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        try:
            query = self.db.query(Appointment)
            if tutor_id:
                query = query.filter(Appointment.tutor_id == tutor_id)
            if student_id:
                query = query.filter(Appointment.student_id == student_id)
            if status:
                query = query.filter(Appointment.status == status.value)
            if start:
                query = query.filter(Appointment.end_time > start)
            if end:
                query = query.filter(Appointment.start_time < end)
            return query.order_by(Appointment.start_time).offset(skip).limit(limit).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing appointments: {str(e)}")
            raise RepositoryException(f"Failed to list appointments: {str(e)}")
