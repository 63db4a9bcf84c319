# backend/app/schemas/__init__.py
"""
Pydantic schemas for the TutorHub scheduling engine.
"""

from .appointment import (
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCompletionResponse,
    AppointmentCreate,
    AppointmentCreateResponse,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStart,
)
from .availability import (
    AvailabilityExpandRequest,
    AvailabilityListResponse,
    AvailabilityRemovalResponse,
    AvailabilitySlotCreate,
    AvailabilitySlotResponse,
    AvailabilityUpdate,
    ExpansionResponse,
    RecurringAvailabilityCreate,
    RecurringAvailabilityResponse,
)
from .base import Money, StandardizedModel, StandardizedResponse, StrictRequestModel
from .common import HealthResponse
from .ledger import (
    LectureSessionResponse,
    LedgerDetailResponse,
    LedgerListResponse,
    LedgerResponse,
    ManualSessionCreate,
    MarkPaidRequest,
    PaymentApplicationResponse,
    PaymentCreate,
    PaymentIntervalUpdate,
    PaymentResponse,
    PaymentStatusUpdate,
    SessionCreate,
    SessionRecordResponse,
    SettleStudentRequest,
    SettleStudentResponse,
)

__all__ = [
    # Appointments
    "AppointmentCancel",
    "AppointmentComplete",
    "AppointmentCompletionResponse",
    "AppointmentCreate",
    "AppointmentCreateResponse",
    "AppointmentListResponse",
    "AppointmentResponse",
    "AppointmentStart",
    # Availability
    "AvailabilityExpandRequest",
    "AvailabilityListResponse",
    "AvailabilityRemovalResponse",
    "AvailabilitySlotCreate",
    "AvailabilitySlotResponse",
    "AvailabilityUpdate",
    "ExpansionResponse",
    "RecurringAvailabilityCreate",
    "RecurringAvailabilityResponse",
    # Base
    "HealthResponse",
    "Money",
    "StandardizedModel",
    "StandardizedResponse",
    "StrictRequestModel",
    # Ledger
    "LectureSessionResponse",
    "LedgerDetailResponse",
    "LedgerListResponse",
    "LedgerResponse",
    "ManualSessionCreate",
    "MarkPaidRequest",
    "PaymentApplicationResponse",
    "PaymentCreate",
    "PaymentIntervalUpdate",
    "PaymentResponse",
    "PaymentStatusUpdate",
    "SessionCreate",
    "SessionRecordResponse",
    "SettleStudentRequest",
    "SettleStudentResponse",
]
