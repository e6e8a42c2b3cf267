"""Identity lookups used by the scheduling engine.

Participants are owned by the identity collaborator; the engine only reads
them and always works with the ``Provider`` / ``Consumer`` union rather than
the raw row.
"""

import logging
from typing import Union
from uuid import UUID
from pydantic import TypeAdapter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookwell.core.config import settings
from bookwell.core.errors import NotFound
from bookwell.models.participant import Participant, ParticipantKind
from bookwell.schemas.participant import Consumer, ParticipantProfile, Provider

logger = logging.getLogger(__name__)

_profile_adapter = TypeAdapter(ParticipantProfile)


def to_profile(row: Participant) -> Union[Provider, Consumer]:
    offset = row.timezone_offset_minutes
    data = {
        "kind": row.kind.value,
        "id": row.id,
        "display_name": row.display_name,
        "phone": row.phone,
        "timezone_offset_minutes": (
            offset if offset is not None else settings.PROVIDER_DEFAULT_UTC_OFFSET_MINUTES
        ),
    }
    if row.kind == ParticipantKind.PROVIDER:
        data["weekly_availability"] = {"days": row.weekly_availability or {}}
        data["session_rate"] = row.session_rate
    return _profile_adapter.validate_python(data)


async def _load_row(db: AsyncSession, participant_id: UUID, for_update: bool = False) -> Participant:
    query = select(Participant).where(Participant.id == participant_id)
    if for_update:
        # Row lock on the provider serializes calendar writes across processes
        # (ignored by SQLite, honoured by PostgreSQL).
        query = query.with_for_update()
    result = await db.execute(query)
    row = result.scalar_one_or_none()
    if row is None or not row.is_active:
        raise NotFound("Participant not found")
    return row


async def get_participant(db: AsyncSession, participant_id: UUID) -> Union[Provider, Consumer]:
    return to_profile(await _load_row(db, participant_id))


async def get_provider(db: AsyncSession, provider_id: UUID, for_update: bool = False) -> Provider:
    try:
        row = await _load_row(db, provider_id, for_update=for_update)
    except NotFound:
        raise NotFound("Provider not found")
    if row.kind != ParticipantKind.PROVIDER:
        raise NotFound("Provider not found")
    return to_profile(row)


async def get_consumer(db: AsyncSession, consumer_id: UUID) -> Consumer:
    try:
        row = await _load_row(db, consumer_id)
    except NotFound:
        raise NotFound("Consumer not found")
    if row.kind != ParticipantKind.CONSUMER:
        raise NotFound("Consumer not found")
    return to_profile(row)


async def get_parties(db: AsyncSession, provider_id: UUID, consumer_id: UUID) -> tuple[Provider, Consumer]:
    """Both sides of an appointment, whether or not still active."""
    result = await db.execute(select(Participant).where(Participant.id.in_([provider_id, consumer_id])))
    rows = {row.id: row for row in result.scalars().all()}
    if provider_id not in rows or consumer_id not in rows:
        raise NotFound("Participant not found")
    return to_profile(rows[provider_id]), to_profile(rows[consumer_id])
