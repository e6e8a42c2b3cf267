"""Appointment booking and lifecycle endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.core.database import get_db
from bookwell.core.deps import Actor, get_collaborators, get_current_actor
from bookwell.core.errors import NotAuthorized
from bookwell.models.appointment import AppointmentStatus
from bookwell.schemas.appointment import (
    AppointmentCreate,
    AppointmentList,
    AppointmentOut,
    CancelRequest,
    CompleteRequest,
    FollowUpCreate,
    PaymentSucceeded,
)
from bookwell.services import lifecycle
from bookwell.services.appointments import list_appointments
from bookwell.services.collaborators import Collaborators
from bookwell.services.followup import spawn_follow_up
from bookwell.utils.clock import to_naive_utc
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/book", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
async def book_session(
    payload: AppointmentCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    """Book a session with a provider. The caller is the consumer."""
    appointment = await lifecycle.create_appointment(
        db,
        collab,
        provider_id=payload.provider_id,
        consumer_id=actor.id,
        start=payload.start,
        duration_minutes=payload.duration_minutes,
        session_kind=payload.session_kind,
        reason=payload.reason,
        prepaid=payload.prepaid,
    )
    return AppointmentOut.from_model(appointment)


@router.get("/", response_model=AppointmentList)
async def get_appointments(
    provider_id: Optional[UUID] = Query(None),
    consumer_id: Optional[UUID] = Query(None),
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    follow_ups_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """List appointments for a calendar view. Non-admins only see their own."""
    if not actor.is_admin and actor.id not in (provider_id, consumer_id):
        raise NotAuthorized("Filter by your own provider_id or consumer_id")

    appointments, total = await list_appointments(
        db,
        provider_id=provider_id,
        consumer_id=consumer_id,
        status=status_filter,
        start=to_naive_utc(start) if start else None,
        end=to_naive_utc(end) if end else None,
        follow_ups_only=follow_ups_only,
        limit=limit,
        skip=skip,
    )
    return AppointmentList(
        appointments=[AppointmentOut.from_model(a) for a in appointments],
        total=total,
        limit=limit,
        skip=skip,
    )


@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    appointment = await lifecycle.get_appointment(db, appointment_id)
    if not (actor.is_admin or appointment.is_party(actor.id)):
        raise NotAuthorized()
    return AppointmentOut.from_model(appointment)


@router.post("/{appointment_id}/confirm", response_model=AppointmentOut)
async def confirm_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    """Provider confirms a pending booking."""
    appointment = await lifecycle.confirm_appointment(db, collab, appointment_id, actor.id)
    return AppointmentOut.from_model(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment(
    appointment_id: UUID,
    payload: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    appointment = await lifecycle.cancel_appointment(
        db,
        collab,
        appointment_id,
        actor.id,
        reason=payload.reason if payload else None,
        is_admin=actor.is_admin,
    )
    return AppointmentOut.from_model(appointment)


@router.post("/{appointment_id}/complete", response_model=AppointmentOut)
async def complete_appointment(
    appointment_id: UUID,
    payload: Optional[CompleteRequest] = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    appointment = await lifecycle.complete_appointment(
        db, collab, appointment_id, actor.id, note=payload.note if payload else None,
    )
    return AppointmentOut.from_model(appointment)


@router.post("/{appointment_id}/no-show", response_model=AppointmentOut)
async def mark_no_show(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    appointment = await lifecycle.mark_no_show(db, collab, appointment_id, actor.id)
    return AppointmentOut.from_model(appointment)


@router.post("/{appointment_id}/payment", response_model=AppointmentOut)
async def payment_succeeded(
    appointment_id: UUID,
    payload: PaymentSucceeded,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    """Callback from the payment collaborator (service token with the admin role)."""
    if not actor.is_admin:
        raise NotAuthorized("Only the payment service can report payments")
    appointment = await lifecycle.record_payment(db, collab, appointment_id, payload.external_ref)
    return AppointmentOut.from_model(appointment)


@router.post("/{appointment_id}/follow-up", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
async def create_follow_up(
    appointment_id: UUID,
    payload: FollowUpCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    """Provider recommends a follow-up after a completed session."""
    follow_up = await spawn_follow_up(
        db,
        collab,
        appointment_id,
        payload.start,
        payload.duration_minutes,
        actor.id,
        note=payload.note,
    )
    return AppointmentOut.from_model(follow_up)
