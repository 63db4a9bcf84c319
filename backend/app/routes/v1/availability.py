# backend/app/routes/v1/availability.py
"""
Availability routes - API v1

Versioned availability endpoints under /api/v1/availability.
All business logic delegated to AvailabilityService.

Endpoints:
    GET /recurring - List weekly templates for a tutor
    POST /recurring - Create a weekly template
    POST /expand - Expand a weekly pattern into dated slots
    GET /slots - List dated slots (and templates) for a tutor
    POST /slots - Create a single dated slot
    PATCH /{kind}/{slot_id} - Toggle or move a slot of either kind
    DELETE /{kind}/{slot_id} - Remove a slot of either kind
"""

import asyncio
from datetime import date
import logging
from typing import NoReturn, Optional, Union

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status

from ...api.dependencies import get_availability_service, get_current_actor
from ...core.enums import ExpansionStatus, SlotKind
from ...core.exceptions import DomainException
from ...models.availability import AvailabilitySlot, RecurringAvailability
from ...principal import ActorPrincipal
from ...schemas.availability import (
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
from ...services.availability_service import AvailabilityService, ExpansionResult

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["availability-v1"])

EXPANSION_MESSAGES = {
    ExpansionStatus.CREATED: "Created {count} availability slots",
    ExpansionStatus.NOTHING_TO_CREATE: "Nothing to create: every date in the window already has this slot",
    ExpansionStatus.NO_OCCURRENCES: "No occurrences of that weekday fall inside the window",
}


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _slot_response(
    slot: Union[RecurringAvailability, AvailabilitySlot],
) -> Union[RecurringAvailabilityResponse, AvailabilitySlotResponse]:
    if slot.kind == SlotKind.RECURRING:
        return RecurringAvailabilityResponse.model_validate(slot)
    return AvailabilitySlotResponse.model_validate(slot)


def _expansion_response(result: ExpansionResult) -> ExpansionResponse:
    return ExpansionResponse(
        status=result.status,
        message=EXPANSION_MESSAGES[result.status].format(count=result.created_count),
        created_count=result.created_count,
        skipped_duplicates=result.skipped_duplicates,
        skipped_conflicts=result.skipped_conflicts,
        slots=[AvailabilitySlotResponse.model_validate(slot) for slot in result.created],
    )


@router.get("/recurring", response_model=AvailabilityListResponse)
async def list_recurring_availability(
    tutor_id: Optional[str] = Query(None, description="Defaults to the caller"),
    include_inactive: bool = Query(False),
    actor: ActorPrincipal = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityListResponse:
    """List a tutor's weekly templates."""
    tutor_id = tutor_id or actor.actor_id
    try:
        recurring, _ = await asyncio.to_thread(
            availability_service.list_availability, tutor_id, include_inactive=include_inactive
        )
        return AvailabilityListResponse(
            tutor_id=tutor_id,
            recurring=[RecurringAvailabilityResponse.model_validate(r) for r in recurring],
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/recurring",
    response_model=RecurringAvailabilityResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Malformed time range"},
        403: {"description": "Not the owning tutor"},
        409: {"description": "Overlaps an existing template"},
    },
)
async def create_recurring_availability(
    payload: RecurringAvailabilityCreate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> RecurringAvailabilityResponse:
    try:
        template = await asyncio.to_thread(
            availability_service.create_recurring,
            actor,
            payload.tutor_id or actor.actor_id,
            payload.day_of_week,
            payload.start_time,
            payload.end_time,
            payload.is_active,
        )
        return RecurringAvailabilityResponse.model_validate(template)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/expand",
    response_model=ExpansionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"description": "Nothing to create or no occurrences in the window"},
        400: {"description": "Malformed pattern or window"},
        403: {"description": "Not the owning tutor"},
    },
)
async def expand_availability(
    response: Response,
    payload: AvailabilityExpandRequest = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> ExpansionResponse:
    """
    Expand a weekly pattern into date-bound slots.

    Safe to re-run: dates that already have the slot are skipped and a run
    that creates nothing reports ``nothing_to_create`` with a 200.
    """
    tutor_id = payload.tutor_id
    if tutor_id is None and payload.recurring_id is None:
        tutor_id = actor.actor_id
    try:
        result = await asyncio.to_thread(
            availability_service.expand,
            actor,
            tutor_id=tutor_id,
            day_of_week=payload.day_of_week,
            start_time=payload.start_time,
            end_time=payload.end_time,
            start_date=payload.start_date,
            end_date=payload.end_date,
            weeks=payload.weeks,
            recurring_id=payload.recurring_id,
        )
        if result.status != ExpansionStatus.CREATED:
            response.status_code = status.HTTP_200_OK
        return _expansion_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/slots", response_model=AvailabilityListResponse)
async def list_availability_slots(
    tutor_id: Optional[str] = Query(None, description="Defaults to the caller"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    include_inactive: bool = Query(False),
    actor: ActorPrincipal = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityListResponse:
    """List a tutor's dated slots in a window, alongside their weekly templates."""
    tutor_id = tutor_id or actor.actor_id
    try:
        recurring, slots = await asyncio.to_thread(
            availability_service.list_availability,
            tutor_id,
            start_date=start_date,
            end_date=end_date,
            include_inactive=include_inactive,
        )
        return AvailabilityListResponse(
            tutor_id=tutor_id,
            recurring=[RecurringAvailabilityResponse.model_validate(r) for r in recurring],
            slots=[AvailabilitySlotResponse.model_validate(s) for s in slots],
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/slots",
    response_model=AvailabilitySlotResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Malformed time range"},
        403: {"description": "Not the owning tutor"},
        409: {"description": "Overlaps an existing slot"},
    },
)
async def create_availability_slot(
    payload: AvailabilitySlotCreate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilitySlotResponse:
    try:
        slot = await asyncio.to_thread(
            availability_service.create_slot,
            actor,
            payload.tutor_id or actor.actor_id,
            payload.slot_date,
            payload.start_time,
            payload.end_time,
            payload.reason,
        )
        return AvailabilitySlotResponse.model_validate(slot)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch(
    "/{kind}/{slot_id}",
    response_model=Union[RecurringAvailabilityResponse, AvailabilitySlotResponse],
)
async def update_availability(
    kind: SlotKind,
    slot_id: str,
    payload: AvailabilityUpdate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> Union[RecurringAvailabilityResponse, AvailabilitySlotResponse]:
    try:
        slot = await asyncio.to_thread(
            availability_service.update_availability,
            actor,
            kind,
            slot_id,
            active=payload.is_active,
            start_time=payload.start_time,
            end_time=payload.end_time,
        )
        return _slot_response(slot)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{kind}/{slot_id}", response_model=AvailabilityRemovalResponse)
async def remove_availability(
    kind: SlotKind,
    slot_id: str,
    actor: ActorPrincipal = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRemovalResponse:
    """
    Remove a slot. Templates are deactivated; dated slots are deleted unless
    a booking has ever referenced them, in which case they are disabled.
    """
    try:
        result = await asyncio.to_thread(
            availability_service.remove_availability, actor, kind, slot_id
        )
        return AvailabilityRemovalResponse(
            kind=result.kind, slot_id=result.slot_id, action=result.action
        )
    except DomainException as e:
        handle_domain_exception(e)
