"""Provider calendar endpoints: open slots and pending confirmations."""

from datetime import date
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.core.database import get_db
from bookwell.core.deps import Actor, get_collaborators, get_current_actor
from bookwell.core.errors import NotAuthorized
from bookwell.schemas.appointment import OpenSlotsResponse, PendingConfirmationOut, SlotOut
from bookwell.services.appointments import pending_confirmations
from bookwell.services.availability import get_open_slots
from bookwell.services.collaborators import Collaborators

router = APIRouter()


@router.get("/{provider_id}/open-slots", response_model=OpenSlotsResponse)
async def open_slots(
    provider_id: UUID,
    day: date = Query(..., alias="date", description="Date in YYYY-MM-DD format"),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    """Bookable slots for a provider on a given day (public)."""
    slots = await get_open_slots(db, provider_id, day, now=collab.now())
    return OpenSlotsResponse(
        provider_id=provider_id,
        date=day,
        slots=[SlotOut(start=slot.start, end=slot.end) for slot in slots],
    )


@router.get("/{provider_id}/pending-confirmations", response_model=list[PendingConfirmationOut])
async def get_pending_confirmations(
    provider_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    collab: Collaborators = Depends(get_collaborators),
):
    """Bookings waiting for this provider, with minutes left before they expire."""
    if not actor.is_admin and actor.id != provider_id:
        raise NotAuthorized("You can only view your own pending confirmations")
    return await pending_confirmations(db, provider_id, collab.now())
