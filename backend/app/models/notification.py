# backend/app/models/notification.py
"""
Notification records handed to the delivery collaborator.

The engine only writes rows; fan-out (in-app, email, push) happens elsewhere.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Index, String, Text
import ulid

from ..database import Base
from .types import UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notification(Base):
    """One notification addressed to a single user."""

    __tablename__ = "notifications"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False)
    kind = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    read_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_notifications_user_created", "user_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<Notification {self.id}: user={self.user_id}, kind={self.kind}>"
