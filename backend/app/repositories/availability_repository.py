# backend/app/repositories/availability_repository.py
"""
Availability Repository for the TutorHub scheduling engine

Data access for both availability shapes:
- recurring weekly templates (RecurringAvailability)
- concrete date-bound slots (AvailabilitySlot)

Overlap decisions are made by the service layer; this repository only
fetches the right candidate sets.
"""

from datetime import date, time
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilitySlot, RecurringAvailability
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilitySlot]):
    """Repository for recurring templates and date-bound slots."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilitySlot)
        self.logger = logging.getLogger(__name__)

    # Recurring templates

    def get_recurring_by_id(self, recurring_id: str) -> Optional[RecurringAvailability]:
        try:
            return (
                self.db.query(RecurringAvailability)
                .filter(RecurringAvailability.id == recurring_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting recurring availability {recurring_id}: {str(e)}")
            raise RepositoryException(f"Failed to get recurring availability: {str(e)}")

    def list_recurring(
        self, tutor_id: str, include_inactive: bool = False
    ) -> List[RecurringAvailability]:
        try:
            query = self.db.query(RecurringAvailability).filter(
                RecurringAvailability.tutor_id == tutor_id
            )
            if not include_inactive:
                query = query.filter(RecurringAvailability.is_active.is_(True))
            return query.order_by(
                RecurringAvailability.day_of_week, RecurringAvailability.start_time
            ).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing recurring availability: {str(e)}")
            raise RepositoryException(f"Failed to list recurring availability: {str(e)}")

    def get_active_recurring_for_day(
        self, tutor_id: str, day_of_week: int, exclude_id: Optional[str] = None
    ) -> List[RecurringAvailability]:
        """Active templates for a tutor on one weekday (overlap candidates)."""
        try:
            query = self.db.query(RecurringAvailability).filter(
                RecurringAvailability.tutor_id == tutor_id,
                RecurringAvailability.day_of_week == day_of_week,
                RecurringAvailability.is_active.is_(True),
            )
            if exclude_id:
                query = query.filter(RecurringAvailability.id != exclude_id)
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting recurring availability for day: {str(e)}")
            raise RepositoryException(f"Failed to get recurring availability: {str(e)}")

    def create_recurring(self, **kwargs: Any) -> RecurringAvailability:
        try:
            template = RecurringAvailability(**kwargs)
            self.db.add(template)
            self.db.flush()
            return template
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating recurring availability: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create recurring availability: {str(e)}")

    # Date-bound slots

    def get_slots_for_date(
        self,
        tutor_id: str,
        slot_date: date,
        available_only: bool = True,
        exclude_id: Optional[str] = None,
    ) -> List[AvailabilitySlot]:
        """Slots for a tutor on one date (overlap candidates)."""
        try:
            query = self.db.query(AvailabilitySlot).filter(
                AvailabilitySlot.tutor_id == tutor_id,
                AvailabilitySlot.slot_date == slot_date,
            )
            if available_only:
                query = query.filter(AvailabilitySlot.is_available.is_(True))
            if exclude_id:
                query = query.filter(AvailabilitySlot.id != exclude_id)
            return query.order_by(AvailabilitySlot.start_time).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting slots for {slot_date}: {str(e)}")
            raise RepositoryException(f"Failed to get slots: {str(e)}")

    def get_slots_for_dates(
        self, tutor_id: str, dates: Iterable[date]
    ) -> Dict[date, List[AvailabilitySlot]]:
        """All slots (available or not) for a tutor on the given dates, grouped by date."""
        date_list = list(dates)
        grouped: Dict[date, List[AvailabilitySlot]] = {d: [] for d in date_list}
        if not date_list:
            return grouped
        try:
            rows = (
                self.db.query(AvailabilitySlot)
                .filter(
                    AvailabilitySlot.tutor_id == tutor_id,
                    AvailabilitySlot.slot_date.in_(date_list),
                )
                .order_by(AvailabilitySlot.slot_date, AvailabilitySlot.start_time)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting slots for dates: {str(e)}")
            raise RepositoryException(f"Failed to get slots: {str(e)}")

        for row in rows:
            grouped.setdefault(row.slot_date, []).append(row)
        return grouped

    def get_existing_slot_keys(self, tutor_id: str, dates: Iterable[date]) -> Set[Tuple[date, time]]:
        """(date, start_time) pairs that already have a slot, available or not."""
        grouped = self.get_slots_for_dates(tutor_id, dates)
        return {(slot.slot_date, slot.start_time) for slots in grouped.values() for slot in slots}

    def list_slots(
        self,
        tutor_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_unavailable: bool = False,
    ) -> List[AvailabilitySlot]:
        try:
            query = self.db.query(AvailabilitySlot).filter(AvailabilitySlot.tutor_id == tutor_id)
            if start_date:
                query = query.filter(AvailabilitySlot.slot_date >= start_date)
            if end_date:
                query = query.filter(AvailabilitySlot.slot_date <= end_date)
            if not include_unavailable:
                query = query.filter(AvailabilitySlot.is_available.is_(True))
            return query.order_by(AvailabilitySlot.slot_date, AvailabilitySlot.start_time).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing slots: {str(e)}")
            raise RepositoryException(f"Failed to list slots: {str(e)}")

    def bulk_create_slots(self, slots: List[Dict[str, Any]]) -> List[AvailabilitySlot]:
        """Create several slots in one flush."""
        if not slots:
            return []
        entities = [AvailabilitySlot(**data) for data in slots]
        self.db.add_all(entities)
        self.flush()
        return entities
