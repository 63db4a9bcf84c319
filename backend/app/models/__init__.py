"""
Database models for the TutorHub scheduling engine.

This module exports all SQLAlchemy models used in the application.
The models are organized by functionality:
- Availability (recurring templates and date-bound slots)
- Appointments
- Lecture-hour ledger, sessions and payments
- Read-only collaborator tables (tutor rates, notifications)
"""

from .appointment import Appointment
from .availability import AvailabilitySlot, RecurringAvailability
from .ledger import LectureHours, LectureSession
from .notification import Notification
from .payment import Payment
from .rate import TutorRate

__all__ = [
    "Appointment",
    "AvailabilitySlot",
    "LectureHours",
    "LectureSession",
    "Notification",
    "Payment",
    "RecurringAvailability",
    "TutorRate",
]
