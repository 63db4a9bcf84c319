# backend/app/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_actor
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_service,
    get_guard,
    get_ledger_service,
    get_lifecycle_service,
    get_notification_service,
)

__all__ = [
    # Auth
    "get_current_actor",
    # Database
    "get_db",
    # Services
    "get_availability_service",
    "get_booking_service",
    "get_guard",
    "get_ledger_service",
    "get_lifecycle_service",
    "get_notification_service",
]
