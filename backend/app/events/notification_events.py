"""Notification events handed to the delivery collaborator."""
from dataclasses import dataclass, field
from typing import Any, Dict

from app.core.enums import NotificationKind


@dataclass
class NotificationEvent:
    """One message for one recipient, emitted after the triggering commit."""

    user_id: str
    kind: NotificationKind
    title: str
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)
