# backend/app/schemas/availability.py
"""
Availability schemas for the TutorHub scheduling engine.

Two shapes of availability, told apart by ``kind``:
- recurring: a weekly template (day_of_week 0 = Sunday)
- date_bound: a concrete slot on one date

Time-order checks happen in the service layer so a malformed range is a
400 like every other business validation failure.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import Field

from ..core.constants import MAX_EXPANSION_WEEKS, MAX_REASON_LENGTH
from ..core.enums import ExpansionStatus, SlotKind
from .base import StandardizedModel, StandardizedResponse, StrictRequestModel


class RecurringAvailabilityCreate(StrictRequestModel):
    """Create a weekly availability template."""

    tutor_id: Optional[str] = Field(None, description="Defaults to the calling tutor")
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: time
    end_time: time
    is_active: bool = True


class AvailabilityExpandRequest(StrictRequestModel):
    """
    Expand a weekly pattern into date-bound slots.

    Either name an existing template with ``recurring_id`` or give the
    pattern inline. The window ends at ``end_date`` (inclusive) or after
    ``weeks`` occurrences (default 4).
    """

    tutor_id: Optional[str] = None
    recurring_id: Optional[str] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    start_date: date
    end_date: Optional[date] = None
    weeks: Optional[int] = Field(None, ge=1, le=MAX_EXPANSION_WEEKS)


class AvailabilitySlotCreate(StrictRequestModel):
    """Create a single date-bound slot."""

    tutor_id: Optional[str] = None
    slot_date: date
    start_time: time
    end_time: time
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class AvailabilityUpdate(StrictRequestModel):
    """Toggle or move a slot of either kind."""

    is_active: Optional[bool] = Field(
        None, description="Active flag for templates, available flag for dated slots"
    )
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class RecurringAvailabilityResponse(StandardizedResponse):
    id: str
    kind: SlotKind = SlotKind.RECURRING
    tutor_id: str
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool
    created_at: datetime


class AvailabilitySlotResponse(StandardizedResponse):
    id: str
    kind: SlotKind = SlotKind.DATE_BOUND
    tutor_id: str
    slot_date: date
    start_time: time
    end_time: time
    is_available: bool
    reason: Optional[str] = None
    recurring_id: Optional[str] = None
    created_at: datetime


class AvailabilityListResponse(StandardizedModel):
    tutor_id: str
    recurring: List[RecurringAvailabilityResponse] = Field(default_factory=list)
    slots: List[AvailabilitySlotResponse] = Field(default_factory=list)


class ExpansionResponse(StandardizedModel):
    """Result of an expansion run; ``nothing_to_create`` means the window was already populated."""

    status: ExpansionStatus
    message: str
    created_count: int
    skipped_duplicates: List[date] = Field(default_factory=list)
    skipped_conflicts: List[date] = Field(default_factory=list)
    slots: List[AvailabilitySlotResponse] = Field(default_factory=list)


class AvailabilityRemovalResponse(StandardizedModel):
    kind: SlotKind
    slot_id: str
    action: str
