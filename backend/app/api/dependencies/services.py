# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...idempotency.guard import IdempotencyGuard, get_idempotency_guard
from ...services.appointment_lifecycle import AppointmentLifecycleService
from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.ledger_service import LedgerService
from ...services.notification_service import NotificationService
from .database import get_db

logger = logging.getLogger(__name__)


def get_guard() -> IdempotencyGuard:
    """Process-wide idempotency guard (Redis or in-memory per settings)."""
    return get_idempotency_guard()


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_availability_service(
    db: Session = Depends(get_db),
    guard: IdempotencyGuard = Depends(get_guard),
) -> AvailabilityService:
    return AvailabilityService(db, guard=guard)


def get_booking_service(
    db: Session = Depends(get_db),
    guard: IdempotencyGuard = Depends(get_guard),
    notification_service: NotificationService = Depends(get_notification_service),
) -> BookingService:
    """
    Get booking service instance with all dependencies.

    Args:
        db: Database session
        guard: Idempotency guard for claims and the scheduling mutex
        notification_service: Notification collaborator

    Returns:
        BookingService instance
    """
    return BookingService(db, guard, notification_service=notification_service)


def get_ledger_service(
    db: Session = Depends(get_db),
    notification_service: NotificationService = Depends(get_notification_service),
) -> LedgerService:
    return LedgerService(db, notification_service=notification_service)


def get_lifecycle_service(
    db: Session = Depends(get_db),
    guard: IdempotencyGuard = Depends(get_guard),
    ledger_service: LedgerService = Depends(get_ledger_service),
    notification_service: NotificationService = Depends(get_notification_service),
) -> AppointmentLifecycleService:
    return AppointmentLifecycleService(
        db,
        guard=guard,
        ledger_service=ledger_service,
        notification_service=notification_service,
    )
