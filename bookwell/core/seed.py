"""Seed demo participants on app startup (SEED_DEMO_DATA=true)."""

import logging
import uuid
from sqlalchemy import select

from bookwell.core.database import async_session
from bookwell.models.participant import Participant, ParticipantKind

logger = logging.getLogger(__name__)

DEMO_PROVIDER_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")
DEMO_CONSUMER_ID = uuid.UUID("00000000-0000-4000-8000-000000000002")

WEEKDAY_HOURS = {"is_available": True, "windows": [{"start_time": "09:00", "end_time": "17:00"}]}
DEMO_AVAILABILITY = {str(day): WEEKDAY_HOURS for day in range(1, 6)}


async def seed_demo_participants():
    """Create one provider and one consumer if they don't exist yet."""
    async with async_session() as db:
        try:
            result = await db.execute(
                select(Participant.id).where(Participant.id.in_([DEMO_PROVIDER_ID, DEMO_CONSUMER_ID]))
            )
            existing = set(result.scalars().all())

            if DEMO_PROVIDER_ID not in existing:
                db.add(Participant(
                    id=DEMO_PROVIDER_ID,
                    kind=ParticipantKind.PROVIDER,
                    display_name="Dr. Demo Provider",
                    phone="+10000000001",
                    weekly_availability=DEMO_AVAILABILITY,
                    session_rate=5000,
                ))
            if DEMO_CONSUMER_ID not in existing:
                db.add(Participant(
                    id=DEMO_CONSUMER_ID,
                    kind=ParticipantKind.CONSUMER,
                    display_name="Demo Consumer",
                    phone="+10000000002",
                ))
            await db.commit()
            logger.info("Demo participants ready: provider=%s consumer=%s", DEMO_PROVIDER_ID, DEMO_CONSUMER_ID)

        except Exception as e:
            logger.error("Failed to seed demo participants: %s", e)
            await db.rollback()
