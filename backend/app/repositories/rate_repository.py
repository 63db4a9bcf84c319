# backend/app/repositories/rate_repository.py
"""
Rate Repository for the TutorHub scheduling engine

Read-only access to the tutor rate card owned by the rate-management
collaborator.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.rate import TutorRate
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class RateRepository(BaseRepository[TutorRate]):
    """Repository for tutor rate lookups."""

    def __init__(self, db: Session):
        super().__init__(db, TutorRate)
        self.logger = logging.getLogger(__name__)

    def resolve_rate(
        self, tutor_id: str, student_id: Optional[str] = None, subject: Optional[str] = None
    ) -> Optional[TutorRate]:
        """
        Most specific rate for a booking.

        Precedence: student+subject, student, subject, tutor default.
        """
        try:
            candidates = (
                self.db.query(TutorRate)
                .filter(
                    TutorRate.tutor_id == tutor_id,
                    or_(TutorRate.student_id.is_(None), TutorRate.student_id == student_id),
                    or_(TutorRate.subject.is_(None), TutorRate.subject == subject),
                )
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error resolving rate for tutor {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to resolve rate: {str(e)}")

        if not candidates:
            return None

        def specificity(rate: TutorRate) -> tuple[int, int]:
            return (1 if rate.student_id else 0, 1 if rate.subject else 0)

        return max(candidates, key=specificity)
