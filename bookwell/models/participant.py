"""Participant record owned by the identity collaborator.

One table holds both providers and consumers; ``kind`` selects which of the
optional columns are meaningful. The scheduling engine never reads these rows
directly, it goes through ``bookwell.services.identity`` which turns them into
the ``Provider`` / ``Consumer`` union.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import JSON
import uuid
from enum import Enum
from bookwell.core.database import Base
from bookwell.utils.clock import utcnow


class ParticipantKind(str, Enum):
    PROVIDER = "provider"
    CONSUMER = "consumer"


class Participant(Base):
    __tablename__ = "participants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind = Column(
        SQLEnum(ParticipantKind, name="participantkind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    display_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    timezone_offset_minutes = Column(Integer, nullable=True)  # None -> platform default
    is_active = Column(Boolean, default=True)

    # Provider-only fields
    weekly_availability = Column(JSON, nullable=True)  # {"1": {"is_available": true, "windows": [...]}, ...}
    session_rate = Column(Integer, nullable=True)  # minor units

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
