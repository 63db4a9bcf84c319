# backend/app/schemas/appointment.py
"""
Appointment schemas for the TutorHub scheduling engine.

A booking names either a date-bound slot (its date and times define the
interval) or explicit start/end instants. Naive datetimes are taken as UTC.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.constants import MAX_NOTES_LENGTH, MAX_REASON_LENGTH, MAX_SUBJECT_LENGTH
from ..core.enums import AppointmentStatus
from .base import Money, StandardizedModel, StandardizedResponse, StrictRequestModel


class AppointmentCreate(StrictRequestModel):
    """Book an appointment with a tutor."""

    tutor_id: str = Field(..., description="Tutor to book")
    student_id: Optional[str] = Field(
        None, description="Student being booked; defaults to the caller"
    )
    subject: str = Field(..., min_length=1, max_length=MAX_SUBJECT_LENGTH)
    slot_id: Optional[str] = Field(None, description="Date-bound availability slot to book")
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, v: str) -> str:
        return v.strip()


class AppointmentComplete(StrictRequestModel):
    """Optional actual times; the scheduled interval is used when absent."""

    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)


class AppointmentStart(StrictRequestModel):
    actual_start_time: Optional[datetime] = None


class AppointmentCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class AppointmentResponse(StandardizedResponse):
    """Appointment as stored, with the rate snapshot taken at booking time."""

    id: str
    student_id: str
    tutor_id: str
    subject: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    notes: Optional[str] = None

    hourly_rate: Money
    currency: str
    total_cost: Money
    availability_slot_id: Optional[str] = None

    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None

    created_at: datetime
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by_id: Optional[str] = None
    cancellation_reason: Optional[str] = None


class AppointmentCreateResponse(AppointmentResponse):
    duplicate: bool = Field(False, description="True when an earlier identical request is replayed")


class AppointmentCompletionResponse(StandardizedModel):
    appointment: AppointmentResponse
    ledger_id: str
    session_id: str
    hours_recorded: Money
    unpaid_hours: Money
    reminder_sent: bool


class AppointmentListResponse(StandardizedModel):
    appointments: List[AppointmentResponse]
    total: int
