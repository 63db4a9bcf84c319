# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for the TutorHub scheduling engine

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- RepositoryFactory: Factory for creating repository instances
- AvailabilityRepository: Recurring templates and date-bound slots
- AppointmentRepository: Appointment candidate sets and listings
- LedgerRepository: Lecture-hour ledgers and session history
- PaymentRepository, RateRepository, NotificationRepository

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_appointment_repository(db)
    candidates = repository.get_active_for_tutor_between(tutor_id, start, end)
"""

from .appointment_repository import AppointmentRepository
from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .factory import RepositoryFactory
from .ledger_repository import LedgerRepository
from .notification_repository import NotificationRepository
from .payment_repository import PaymentRepository
from .rate_repository import RateRepository

__all__ = [
    "AppointmentRepository",
    "AvailabilityRepository",
    "BaseRepository",
    "LedgerRepository",
    "NotificationRepository",
    "PaymentRepository",
    "RateRepository",
    "RepositoryFactory",
]
