# backend/app/repositories/ledger_repository.py
"""
Ledger Repository for the TutorHub scheduling engine

Data access for LectureHours ledgers and their LectureSession history.
Every read that precedes a balance change goes through a locking variant
(FOR UPDATE on PostgreSQL, the database write lock on SQLite) so two
concurrent writers cannot lose an update.
"""

import logging
from typing import Any, List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.constants import PAYMENT_REMINDER_LEAD_HOURS
from ..core.exceptions import RepositoryException
from ..models.ledger import LectureHours, LectureSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class LedgerRepository(BaseRepository[LectureHours]):
    """Repository for lecture-hour ledgers and sessions."""

    def __init__(self, db: Session):
        super().__init__(db, LectureHours)
        self.logger = logging.getLogger(__name__)

    def get_by_triple(
        self, student_id: str, tutor_id: str, subject: str, for_update: bool = False
    ) -> Optional[LectureHours]:
        try:
            query = self.db.query(LectureHours).filter(
                LectureHours.student_id == student_id,
                LectureHours.tutor_id == tutor_id,
                LectureHours.subject == subject,
            )
            if for_update:
                query = self._lock_rows(query)
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting ledger: {str(e)}")
            raise RepositoryException(f"Failed to get ledger: {str(e)}")

    def get_or_create_for_update(
        self, student_id: str, tutor_id: str, subject: str, **defaults: Any
    ) -> tuple[LectureHours, bool]:
        """
        Lock the ledger for a triple, creating it lazily.

        Returns the ledger and whether it was created. A concurrent creator
        losing the unique-constraint race re-reads the winner's row.
        """
        ledger = self.get_by_triple(student_id, tutor_id, subject, for_update=True)
        if ledger is not None:
            return ledger, False

        ledger = LectureHours(student_id=student_id, tutor_id=tutor_id, subject=subject, **defaults)
        if self.dialect_name == "sqlite":
            # the locking read above already holds the SQLite write lock
            self.db.add(ledger)
            self.flush()
            return ledger, True

        try:
            with self.db.begin_nested():
                self.db.add(ledger)
            return ledger, True
        except IntegrityError:
            self.logger.info(
                "ledger_create_race_lost",
                extra={"student_id": student_id, "tutor_id": tutor_id, "subject": subject},
            )
            existing = self.get_by_triple(student_id, tutor_id, subject, for_update=True)
            if existing is None:
                raise RepositoryException("Ledger vanished after unique violation")
            return existing, False

    def list_ledgers(
        self,
        tutor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        outstanding_only: bool = False,
    ) -> List[LectureHours]:
        try:
            query = self.db.query(LectureHours)
            if tutor_id:
                query = query.filter(LectureHours.tutor_id == tutor_id)
            if student_id:
                query = query.filter(LectureHours.student_id == student_id)
            if outstanding_only:
                query = query.filter(LectureHours.unpaid_hours > 0)
            return query.order_by(LectureHours.created_at).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing ledgers: {str(e)}")
            raise RepositoryException(f"Failed to list ledgers: {str(e)}")

    def get_outstanding_for_pair_for_update(
        self, tutor_id: str, student_id: str
    ) -> List[LectureHours]:
        try:
            query = self.db.query(LectureHours).filter(
                LectureHours.tutor_id == tutor_id,
                LectureHours.student_id == student_id,
                LectureHours.unpaid_hours > 0,
            )
            return self._lock_rows(query).order_by(LectureHours.created_at).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting outstanding ledgers: {str(e)}")
            raise RepositoryException(f"Failed to get outstanding ledgers: {str(e)}")

    def get_pending_reminders(self, tutor_id: Optional[str] = None) -> List[LectureHours]:
        """Ledgers inside the one-hour window before their billing threshold."""
        threshold = LectureHours.payment_interval - PAYMENT_REMINDER_LEAD_HOURS
        try:
            query = self.db.query(LectureHours).filter(
                and_(
                    LectureHours.unpaid_hours >= threshold,
                    LectureHours.unpaid_hours < LectureHours.payment_interval,
                ),
                LectureHours.reminder_sent.is_(False),
            )
            if tutor_id:
                query = query.filter(LectureHours.tutor_id == tutor_id)
            return query.order_by(LectureHours.created_at).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting pending reminders: {str(e)}")
            raise RepositoryException(f"Failed to get pending reminders: {str(e)}")

    # Sessions

    def create_session(self, **kwargs: Any) -> LectureSession:
        session = LectureSession(**kwargs)
        self.db.add(session)
        self.flush()
        return session

    def get_unpaid_sessions(self, ledger_id: str) -> List[LectureSession]:
        """Unpaid sessions in creation order (oldest first)."""
        try:
            return (
                self.db.query(LectureSession)
                .filter(
                    LectureSession.lecture_hours_id == ledger_id,
                    LectureSession.paid.is_(False),
                )
                .order_by(LectureSession.created_at, LectureSession.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting unpaid sessions: {str(e)}")
            raise RepositoryException(f"Failed to get unpaid sessions: {str(e)}")

    def list_sessions(self, ledger_id: str) -> List[LectureSession]:
        try:
            return (
                self.db.query(LectureSession)
                .filter(LectureSession.lecture_hours_id == ledger_id)
                .order_by(LectureSession.created_at, LectureSession.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing sessions: {str(e)}")
            raise RepositoryException(f"Failed to list sessions: {str(e)}")
