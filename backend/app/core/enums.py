# backend/app/core/enums.py
"""
Core enums for the TutorHub scheduling engine.

This module contains enumeration types used throughout the application
for type safety and consistency.
"""

from enum import Enum


class RoleName(str, Enum):
    """
    Roles supplied by the upstream identity collaborator.

    The engine trusts the role it is handed and only checks ownership.
    """

    ADMIN = "admin"
    TUTOR = "tutor"
    STUDENT = "student"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_APPOINTMENT_STATUSES


ACTIVE_APPOINTMENT_STATUSES = frozenset(
    {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
    }
)
TERMINAL_APPOINTMENT_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
)


class PaymentStatus(str, Enum):
    """Payment record states."""

    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class SlotKind(str, Enum):
    """Discriminant for the two shapes of availability."""

    RECURRING = "recurring"
    DATE_BOUND = "date_bound"


class ExpansionStatus(str, Enum):
    """Outcome of expanding a recurring pattern into dated slots."""

    CREATED = "created"
    NOTHING_TO_CREATE = "nothing_to_create"
    NO_OCCURRENCES = "no_occurrences"


class NotificationKind(str, Enum):
    """Kinds of events handed to the notification collaborator."""

    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_STARTED = "appointment_started"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_NO_SHOW = "appointment_no_show"
    HOURS_RECORDED = "hours_recorded"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_SCHEDULED = "payment_scheduled"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_INTERVAL_CHANGED = "payment_interval_changed"
