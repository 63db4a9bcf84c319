# backend/app/repositories/notification_repository.py
"""
Notification Repository for the TutorHub scheduling engine
"""

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.notification import Notification
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class NotificationRepository(BaseRepository[Notification]):
    """Repository for persisted notifications."""

    def __init__(self, db: Session):
        super().__init__(db, Notification)
        self.logger = logging.getLogger(__name__)

    def list_for_user(self, user_id: str, limit: int = 50) -> List[Notification]:
        try:
            return (
                self.db.query(Notification)
                .filter(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing notifications for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list notifications: {str(e)}")
