# backend/app/routes/v1/ledgers.py
"""
Ledger and payment routes - API v1

Ledger endpoints live under /api/v1/ledgers; payment and settlement
endpoints hang off /api/v1 directly. All business logic delegated to
LedgerService.

Endpoints:
    GET /ledgers - Ledgers visible to the caller
    GET /ledgers/reminders - Ledgers inside the reminder window
    POST /ledgers/sessions - Record hours for a (student, tutor, subject)
    GET /ledgers/{ledger_id} - Ledger with sessions and payments
    POST /ledgers/{ledger_id}/manual-sessions - Back-date hours
    PATCH /ledgers/{ledger_id}/payment-interval - Change the billing interval
    POST /ledgers/{ledger_id}/payments - Add a payment (PAID or PENDING)
    PATCH /payments/{payment_id} - Change a payment's status
    POST /payments/{payment_id}/mark-paid - Mark a payment received
    POST /payments/{payment_id}/reminders - Send a payment reminder
    POST /tutors/{tutor_id}/students/{student_id}/mark-paid - Settle a student
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from ...api.dependencies import get_current_actor, get_ledger_service
from ...core.enums import PaymentStatus
from ...core.exceptions import DomainException
from ...principal import ActorPrincipal
from ...schemas.ledger import (
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
from ...services.ledger_service import LedgerService, PaymentApplication, SessionRecord

logger = logging.getLogger(__name__)

# Mounted at /ledgers
router = APIRouter(tags=["ledgers-v1"])
# Mounted at the v1 root
payments_router = APIRouter(tags=["payments-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _session_record_response(record: SessionRecord) -> SessionRecordResponse:
    return SessionRecordResponse(
        ledger=LedgerResponse.model_validate(record.ledger),
        session=LectureSessionResponse.model_validate(record.session),
        unpaid_hours=record.unpaid_hours,
        reminder_sent=record.reminder_sent,
    )


def _application_response(application: PaymentApplication) -> PaymentApplicationResponse:
    return PaymentApplicationResponse(
        payment=PaymentResponse.model_validate(application.payment),
        ledger=LedgerResponse.model_validate(application.ledger),
        hours_applied=application.hours_applied,
        hours_absorbed=application.hours_absorbed,
        settled_session_ids=application.settled_session_ids,
    )


# ============================================================================
# SECTION 1: Static ledger routes
# ============================================================================


@router.get("", response_model=LedgerListResponse)
async def list_ledgers(
    tutor_id: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    outstanding_only: bool = Query(False),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerListResponse:
    try:
        ledgers = await asyncio.to_thread(
            ledger_service.list_ledgers,
            actor,
            tutor_id=tutor_id,
            student_id=student_id,
            outstanding_only=outstanding_only,
        )
        items = [LedgerResponse.model_validate(ledger) for ledger in ledgers]
        return LedgerListResponse(ledgers=items, total=len(items))
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/reminders", response_model=LedgerListResponse)
async def list_pending_reminders(
    tutor_id: Optional[str] = Query(None),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerListResponse:
    """Ledgers within one hour of their billing threshold that have not been reminded."""
    try:
        ledgers = await asyncio.to_thread(ledger_service.pending_reminders, actor, tutor_id)
        items = [LedgerResponse.model_validate(ledger) for ledger in ledgers]
        return LedgerListResponse(ledgers=items, total=len(items))
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/sessions",
    response_model=SessionRecordResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Not the owning tutor"}},
)
async def record_session(
    payload: SessionCreate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> SessionRecordResponse:
    try:
        record = await asyncio.to_thread(
            ledger_service.log_session,
            actor,
            payload.student_id,
            payload.tutor_id or actor.actor_id,
            payload.subject,
            payload.hours,
            payload.notes,
        )
        return _session_record_response(record)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Dynamic ledger routes
# ============================================================================


@router.get("/{ledger_id}", response_model=LedgerDetailResponse)
async def get_ledger(
    ledger_id: str,
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerDetailResponse:
    try:
        ledger = await asyncio.to_thread(ledger_service.get_ledger, actor, ledger_id)
        sessions = await asyncio.to_thread(ledger_service.list_sessions, actor, ledger_id)
        payments = await asyncio.to_thread(ledger_service.list_payments, actor, ledger_id)
        return LedgerDetailResponse(
            ledger=LedgerResponse.model_validate(ledger),
            sessions=[LectureSessionResponse.model_validate(s) for s in sessions],
            payments=[PaymentResponse.model_validate(p) for p in payments],
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{ledger_id}/manual-sessions",
    response_model=SessionRecordResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Not the owning tutor"}, 404: {"description": "Not found"}},
)
async def record_manual_session(
    ledger_id: str,
    payload: ManualSessionCreate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> SessionRecordResponse:
    try:
        record = await asyncio.to_thread(
            ledger_service.record_manual_session, actor, ledger_id, payload.hours, payload.notes
        )
        return _session_record_response(record)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch(
    "/{ledger_id}/payment-interval",
    response_model=LedgerResponse,
    responses={403: {"description": "Not the owning tutor"}, 404: {"description": "Not found"}},
)
async def update_payment_interval(
    ledger_id: str,
    payload: PaymentIntervalUpdate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> LedgerResponse:
    try:
        ledger = await asyncio.to_thread(
            ledger_service.update_payment_interval, actor, ledger_id, payload.payment_interval
        )
        return LedgerResponse.model_validate(ledger)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{ledger_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Not the owning tutor"}, 404: {"description": "Not found"}},
)
async def add_payment(
    ledger_id: str,
    payload: PaymentCreate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> PaymentResponse:
    """Add a payment. PAID applies it to the ledger now; PENDING schedules it."""
    try:
        if payload.status == PaymentStatus.PENDING:
            payment = await asyncio.to_thread(
                ledger_service.schedule_payment,
                actor,
                ledger_id,
                payload.hours_included,
                payload.amount,
                due_date=payload.due_date,
                currency=payload.currency,
                notes=payload.notes,
            )
        else:
            application = await asyncio.to_thread(
                ledger_service.apply_payment,
                actor,
                ledger_id,
                payload.hours_included,
                payload.amount,
                currency=payload.currency,
                payment_method=payload.payment_method,
                transaction_id=payload.transaction_id,
                notes=payload.notes,
            )
            payment = application.payment
        return PaymentResponse.model_validate(payment)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 3: Payment and settlement routes
# ============================================================================


@payments_router.patch(
    "/payments/{payment_id}",
    response_model=PaymentResponse,
    responses={409: {"description": "Payment status is final"}},
)
async def update_payment_status(
    payment_id: str,
    payload: PaymentStatusUpdate = Body(...),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> PaymentResponse:
    try:
        payment = await asyncio.to_thread(
            ledger_service.update_payment_status,
            actor,
            payment_id,
            payload.status,
            payment_method=payload.payment_method,
            transaction_id=payload.transaction_id,
            notes=payload.notes,
        )
        return PaymentResponse.model_validate(payment)
    except DomainException as e:
        handle_domain_exception(e)


@payments_router.post("/payments/{payment_id}/mark-paid", response_model=PaymentResponse)
async def mark_payment_received(
    payment_id: str,
    payload: Optional[MarkPaidRequest] = Body(None),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> PaymentResponse:
    payload = payload or MarkPaidRequest()
    try:
        payment = await asyncio.to_thread(
            ledger_service.mark_payment_received,
            actor,
            payment_id,
            payment_method=payload.payment_method,
            transaction_id=payload.transaction_id,
        )
        return PaymentResponse.model_validate(payment)
    except DomainException as e:
        handle_domain_exception(e)


@payments_router.post("/payments/{payment_id}/reminders", response_model=PaymentResponse)
async def send_payment_reminder(
    payment_id: str,
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> PaymentResponse:
    try:
        payment = await asyncio.to_thread(ledger_service.send_payment_reminder, actor, payment_id)
        return PaymentResponse.model_validate(payment)
    except DomainException as e:
        handle_domain_exception(e)


@payments_router.post(
    "/tutors/{tutor_id}/students/{student_id}/mark-paid",
    response_model=SettleStudentResponse,
)
async def settle_student(
    tutor_id: str,
    student_id: str,
    payload: Optional[SettleStudentRequest] = Body(None),
    actor: ActorPrincipal = Depends(get_current_actor),
    ledger_service: LedgerService = Depends(get_ledger_service),
) -> SettleStudentResponse:
    """Mark every outstanding ledger between the tutor and the student as paid."""
    try:
        applications = await asyncio.to_thread(
            ledger_service.settle_student,
            actor,
            tutor_id,
            student_id,
            payload.reason if payload else None,
        )
        return SettleStudentResponse(
            tutor_id=tutor_id,
            student_id=student_id,
            settled=[_application_response(a) for a in applications],
        )
    except DomainException as e:
        handle_domain_exception(e)
