"""Appointment model for the scheduling engine."""

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Enum as SQLEnum, Text, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime, timedelta
import enum
from bookwell.core.database import Base
from bookwell.core.errors import IllegalTransition
from bookwell.services.intervals import Interval


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class AppointmentStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending-payment"
    PENDING_PROVIDER_CONFIRMATION = "pending-provider-confirmation"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no-show"

    @property
    def is_active(self) -> bool:
        """Occupies the provider's calendar."""
        return self in ACTIVE_STATUSES

    @property
    def is_initial(self) -> bool:
        return self in INITIAL_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({
    AppointmentStatus.PENDING_PROVIDER_CONFIRMATION,
    AppointmentStatus.SCHEDULED,
})
INITIAL_STATUSES = frozenset({
    AppointmentStatus.PENDING_PAYMENT,
    AppointmentStatus.PENDING_PROVIDER_CONFIRMATION,
})
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELED,
    AppointmentStatus.NO_SHOW,
})


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class SessionKind(str, enum.Enum):
    VIDEO = "video"
    AUDIO = "audio"
    CHAT = "chat"


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_provider_status_start", "provider_id", "status", "start_time"),
        Index("ix_appointments_consumer_start", "consumer_id", "start_time"),
        Index("ix_appointments_status_deadline", "status", "confirmation_deadline"),
        Index("ix_appointments_status_end", "status", "end_time"),
        Index("ix_appointments_status_created", "status", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_id = Column(UUID(as_uuid=True), ForeignKey("participants.id"), nullable=False)
    consumer_id = Column(UUID(as_uuid=True), ForeignKey("participants.id"), nullable=False)

    session_kind = Column(
        SQLEnum(SessionKind, name="sessionkind", values_callable=_enum_values),
        nullable=False,
        default=SessionKind.VIDEO,
    )
    reason = Column(Text, nullable=True)

    # Timing (stored as naive UTC)
    start = Column("start_time", DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    end = Column("end_time", DateTime, nullable=False)

    status = Column(
        SQLEnum(AppointmentStatus, name="appointmentstatus", values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.PENDING_PROVIDER_CONFIRMATION,
    )
    confirmation_deadline = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    completion_note = Column(Text, nullable=True)

    # Payment sub-record (owned by the payment collaborator); amount in minor units
    payment_amount = Column(Integer, nullable=True)
    payment_status = Column(
        SQLEnum(PaymentStatus, name="paymentstatus", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_external_ref = Column(String, nullable=True)

    # Follow-up links: the later record points back at its original, the
    # original keeps a nullable forward pointer resolved by id.
    follow_up_of_id = Column(UUID(as_uuid=True), ForeignKey("appointments.id"), nullable=True, index=True)
    follow_up_appointment_id = Column(UUID(as_uuid=True), nullable=True)
    follow_up_note = Column(Text, nullable=True)

    reminder_sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    # Relationships
    provider = relationship("Participant", foreign_keys=[provider_id], lazy="raise")
    consumer = relationship("Participant", foreign_keys=[consumer_id], lazy="raise")

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def set_window(self, start: datetime, duration_minutes: int) -> None:
        """Place the appointment on the calendar, keeping ``end`` derived."""
        if self.status is not None and not AppointmentStatus(self.status).is_initial:
            raise IllegalTransition(
                self.status.value, self.status.value,
                detail="Appointment timing can only change before it is scheduled",
            )
        self.start = start
        self.duration_minutes = duration_minutes
        self.end = start + timedelta(minutes=duration_minutes)

    def is_party(self, participant_id) -> bool:
        return participant_id in (self.provider_id, self.consumer_id)

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.status} {self.start}>"
