"""Event primitives emitted by the scheduling engine."""

from app.events.notification_events import NotificationEvent

__all__ = ["NotificationEvent"]
