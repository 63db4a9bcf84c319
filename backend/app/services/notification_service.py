# backend/app/services/notification_service.py
"""
Notification Service for the TutorHub scheduling engine

Hands notification events to the delivery collaborator by persisting them
to the notifications table. Delivery fan-out (in-app, email, push) is
someone else's job.

Emission is best-effort: callers emit only after their own transaction has
committed, and a failure here is logged and swallowed so it can never
change the outcome of the booking, completion or payment it describes.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..events.notification_events import NotificationEvent
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.notification_repository import NotificationRepository
from .base import BaseService

logger = logging.getLogger(__name__)


class NotificationService(BaseService):
    def __init__(self, db: Session, repository: Optional[NotificationRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_notification_repository(db)

    def emit(self, event: NotificationEvent) -> bool:
        """Persist one notification. Returns False instead of raising on failure."""
        try:
            with self.transaction():
                self.repository.create(
                    user_id=event.user_id,
                    kind=event.kind.value,
                    title=event.title,
                    message=event.message,
                    payload=event.payload,
                )
        except Exception as exc:
            prometheus_metrics.record_notification(event.kind.value, "failed")
            logger.error(
                "notification_emit_failed",
                extra={
                    "recipient_id": event.user_id,
                    "kind": event.kind.value,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False

        prometheus_metrics.record_notification(event.kind.value, "sent")
        return True

    def emit_all(self, events: Iterable[NotificationEvent]) -> int:
        """Emit each event independently; one failure does not stop the rest."""
        return sum(1 for event in events if self.emit(event))

    def list_for_user(self, user_id: str, limit: int = 50) -> List:
        return self.repository.list_for_user(user_id, limit=limit)
