# backend/app/routes/v1/appointments.py
"""
Appointment routes - API v1

Versioned appointment endpoints under /api/v1/appointments.
Booking is delegated to BookingService, status changes to
AppointmentLifecycleService.

Endpoints:
    GET / - List appointments visible to the caller
    POST / - Book an appointment (Idempotency-Key header optional)
    GET /{appointment_id} - Appointment details
    POST /{appointment_id}/confirm - Tutor confirms
    POST /{appointment_id}/start - Tutor starts the session
    POST /{appointment_id}/complete - Tutor completes; hours go to the ledger
    POST /{appointment_id}/cancel - Either party cancels
    POST /{appointment_id}/no-show - Tutor marks the student absent
"""

import asyncio
from datetime import datetime
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Response, status
from fastapi.params import Path

from ...api.dependencies import get_booking_service, get_current_actor, get_lifecycle_service
from ...core.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from ...core.enums import AppointmentStatus
from ...core.exceptions import DomainException
from ...principal import ActorPrincipal
from ...schemas.appointment import (
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCompletionResponse,
    AppointmentCreate,
    AppointmentCreateResponse,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStart,
)
from ...services.appointment_lifecycle import AppointmentLifecycleService
from ...services.booking_service import BookingService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["appointments-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _appointment_id() -> str:
    return Path(..., description="Appointment ULID", pattern=ULID_PATH_PATTERN)


# ============================================================================
# SECTION 1: Collection routes
# ============================================================================


@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    tutor_id: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    start: Optional[datetime] = Query(None, description="Window start (inclusive)"),
    end: Optional[datetime] = Query(None, description="Window end (exclusive)"),
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    actor: ActorPrincipal = Depends(get_current_actor),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentListResponse:
    """List appointments. Students and tutors only ever see their own."""
    try:
        appointments = await asyncio.to_thread(
            booking_service.list_appointments,
            actor,
            tutor_id=tutor_id,
            student_id=student_id,
            status=appointment_status,
            start=start,
            end=end,
            skip=skip,
            limit=limit,
        )
        items = [AppointmentResponse.model_validate(a) for a in appointments]
        return AppointmentListResponse(appointments=items, total=len(items))
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "",
    response_model=AppointmentCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"description": "Duplicate retry; the earlier appointment is returned"},
        400: {"description": "Malformed interval or request"},
        403: {"description": "Cannot book for another student"},
        404: {"description": "Slot not found"},
        409: {"description": "Slot unavailable or identical request in flight"},
    },
)
async def create_appointment(
    response: Response,
    booking_data: AppointmentCreate = Body(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    actor: ActorPrincipal = Depends(get_current_actor),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentCreateResponse:
    """
    Book an appointment.

    Identical requests collapse onto one appointment: a replay returns the
    original with ``duplicate: true`` and a 200.
    """
    try:
        outcome = await asyncio.to_thread(
            booking_service.create_appointment, actor, booking_data, idempotency_key
        )
        if outcome.duplicate:
            response.status_code = status.HTTP_200_OK
        result = AppointmentCreateResponse.model_validate(outcome.appointment)
        result.duplicate = outcome.duplicate
        return result
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Dynamic routes (with path parameters - placed last)
# ============================================================================


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    responses={403: {"description": "Not a party"}, 404: {"description": "Not found"}},
)
async def get_appointment(
    appointment_id: str = _appointment_id(),
    actor: ActorPrincipal = Depends(get_current_actor),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(
            booking_service.get_appointment, actor, appointment_id
        )
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: str = _appointment_id(),
    actor: ActorPrincipal = Depends(get_current_actor),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(lifecycle.confirm, actor, appointment_id)
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{appointment_id}/start", response_model=AppointmentResponse)
async def start_appointment(
    appointment_id: str = _appointment_id(),
    payload: Optional[AppointmentStart] = Body(None),
    actor: ActorPrincipal = Depends(get_current_actor),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(
            lifecycle.start,
            actor,
            appointment_id,
            payload.actual_start_time if payload else None,
        )
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentCompletionResponse,
    responses={
        400: {"description": "Non-positive duration"},
        409: {"description": "Appointment already terminal"},
    },
)
async def complete_appointment(
    appointment_id: str = _appointment_id(),
    payload: Optional[AppointmentComplete] = Body(None),
    actor: ActorPrincipal = Depends(get_current_actor),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
) -> AppointmentCompletionResponse:
    """Complete an appointment; its hours are added to the student's ledger."""
    payload = payload or AppointmentComplete()
    try:
        result = await asyncio.to_thread(
            lifecycle.complete,
            actor,
            appointment_id,
            actual_start_time=payload.actual_start_time,
            actual_end_time=payload.actual_end_time,
            notes=payload.notes,
        )
        record = result.session_record
        return AppointmentCompletionResponse(
            appointment=AppointmentResponse.model_validate(result.appointment),
            ledger_id=record.ledger.id,
            session_id=record.session.id,
            hours_recorded=record.session.duration,
            unpaid_hours=record.unpaid_hours,
            reminder_sent=result.reminder_sent,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str = _appointment_id(),
    payload: Optional[AppointmentCancel] = Body(None),
    actor: ActorPrincipal = Depends(get_current_actor),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(
            lifecycle.cancel, actor, appointment_id, payload.reason if payload else None
        )
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{appointment_id}/no-show", response_model=AppointmentResponse)
async def mark_appointment_no_show(
    appointment_id: str = _appointment_id(),
    actor: ActorPrincipal = Depends(get_current_actor),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(lifecycle.mark_no_show, actor, appointment_id)
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)
