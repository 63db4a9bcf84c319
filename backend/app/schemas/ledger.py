# backend/app/schemas/ledger.py
"""
Ledger and payment schemas for the TutorHub scheduling engine.

Hours and money are decimals on the wire (serialized as numbers).
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.constants import MAX_NOTES_LENGTH, MAX_REASON_LENGTH, MAX_SUBJECT_LENGTH
from ..core.enums import PaymentStatus
from .base import Money, StandardizedModel, StandardizedResponse, StrictRequestModel


class SessionCreate(StrictRequestModel):
    """Record taught hours for a (student, tutor, subject) triple."""

    student_id: str
    tutor_id: Optional[str] = Field(None, description="Defaults to the calling tutor")
    subject: str = Field(..., min_length=1, max_length=MAX_SUBJECT_LENGTH)
    hours: Money = Field(..., description="Hours taught")
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)

    @field_validator("hours")
    @classmethod
    def positive_hours(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("hours must be positive")
        return v


class ManualSessionCreate(StrictRequestModel):
    hours: Money
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)

    @field_validator("hours")
    @classmethod
    def positive_hours(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("hours must be positive")
        return v


class PaymentIntervalUpdate(StrictRequestModel):
    payment_interval: int = Field(..., gt=0, description="Unpaid hours per billing cycle")


class PaymentCreate(StrictRequestModel):
    """
    Add a payment to a ledger.

    ``status`` PAID (default) applies it immediately; PENDING schedules it
    with an optional due date.
    """

    hours_included: Money
    amount: Money
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    status: PaymentStatus = PaymentStatus.PAID
    due_date: Optional[datetime] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    transaction_id: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)

    @field_validator("status")
    @classmethod
    def creatable_status(cls, v: PaymentStatus) -> PaymentStatus:
        if v not in (PaymentStatus.PAID, PaymentStatus.PENDING):
            raise ValueError("New payments must be PAID or PENDING")
        return v


class PaymentStatusUpdate(StrictRequestModel):
    status: PaymentStatus
    payment_method: Optional[str] = Field(None, max_length=50)
    transaction_id: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)


class MarkPaidRequest(StrictRequestModel):
    payment_method: Optional[str] = Field(None, max_length=50)
    transaction_id: Optional[str] = Field(None, max_length=255)


class SettleStudentRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class LedgerResponse(StandardizedResponse):
    id: str
    student_id: str
    tutor_id: str
    subject: str
    total_hours: Money
    unpaid_hours: Money
    payment_interval: int
    last_session_date: Optional[datetime] = None
    reminder_sent: bool
    created_at: datetime


class LectureSessionResponse(StandardizedResponse):
    id: str
    lecture_hours_id: str
    appointment_id: Optional[str] = None
    duration: Money
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    notes: Optional[str] = None
    paid: bool
    created_at: datetime


class PaymentResponse(StandardizedResponse):
    id: str
    lecture_hours_id: str
    amount: Money
    currency: str
    hours_included: Money
    status: PaymentStatus
    due_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    reminders_sent: int
    last_reminder_at: Optional[datetime] = None
    created_at: datetime


class SessionRecordResponse(StandardizedModel):
    ledger: LedgerResponse
    session: LectureSessionResponse
    unpaid_hours: Money
    reminder_sent: bool


class PaymentApplicationResponse(StandardizedModel):
    payment: PaymentResponse
    ledger: LedgerResponse
    hours_applied: Money
    hours_absorbed: Money
    settled_session_ids: List[str] = Field(default_factory=list)


class LedgerDetailResponse(StandardizedModel):
    ledger: LedgerResponse
    sessions: List[LectureSessionResponse] = Field(default_factory=list)
    payments: List[PaymentResponse] = Field(default_factory=list)


class LedgerListResponse(StandardizedModel):
    ledgers: List[LedgerResponse]
    total: int


class SettleStudentResponse(StandardizedModel):
    tutor_id: str
    student_id: str
    settled: List[PaymentApplicationResponse] = Field(default_factory=list)
