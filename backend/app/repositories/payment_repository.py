# backend/app/repositories/payment_repository.py
"""
Payment Repository for the TutorHub scheduling engine
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import PaymentStatus
from ..core.exceptions import RepositoryException
from ..models.payment import Payment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    """Repository for payment records."""

    def __init__(self, db: Session):
        super().__init__(db, Payment)
        self.logger = logging.getLogger(__name__)

    def list_for_ledger(
        self, ledger_id: str, status: Optional[PaymentStatus] = None
    ) -> List[Payment]:
        try:
            query = self.db.query(Payment).filter(Payment.lecture_hours_id == ledger_id)
            if status:
                query = query.filter(Payment.status == status.value)
            return query.order_by(Payment.created_at, Payment.id).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing payments for ledger {ledger_id}: {str(e)}")
            raise RepositoryException(f"Failed to list payments: {str(e)}")
