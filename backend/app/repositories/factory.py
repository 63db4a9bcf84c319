# backend/app/repositories/factory.py
"""
Repository Factory for the TutorHub scheduling engine

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .appointment_repository import AppointmentRepository
    from .availability_repository import AvailabilityRepository
    from .ledger_repository import LedgerRepository
    from .notification_repository import NotificationRepository
    from .payment_repository import PaymentRepository
    from .rate_repository import RateRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for availability operations."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_appointment_repository(db: Session) -> "AppointmentRepository":
        """Create repository for appointment operations."""
        from .appointment_repository import AppointmentRepository

        return AppointmentRepository(db)

    @staticmethod
    def create_ledger_repository(db: Session) -> "LedgerRepository":
        """Create repository for ledger and session operations."""
        from .ledger_repository import LedgerRepository

        return LedgerRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for payment records."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_rate_repository(db: Session) -> "RateRepository":
        """Create repository for tutor rate lookups."""
        from .rate_repository import RateRepository

        return RateRepository(db)

    @staticmethod
    def create_notification_repository(db: Session) -> "NotificationRepository":
        """Create repository for notification records."""
        from .notification_repository import NotificationRepository

        return NotificationRepository(db)
