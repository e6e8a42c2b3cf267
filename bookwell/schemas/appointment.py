"""Pydantic schemas for Appointments."""

from datetime import datetime, date
from uuid import UUID
from pydantic import BaseModel, Field
from typing import Optional
from bookwell.models.appointment import AppointmentStatus, PaymentStatus, SessionKind


class AppointmentCreate(BaseModel):
    """Schema for booking a session. The consumer is the authenticated actor."""
    provider_id: UUID
    start: datetime
    duration_minutes: int = 30
    session_kind: SessionKind = SessionKind.VIDEO
    reason: Optional[str] = None
    prepaid: bool = False


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class CompleteRequest(BaseModel):
    note: Optional[str] = None


class PaymentSucceeded(BaseModel):
    """Callback from the payment collaborator once a charge settles."""
    external_ref: str


class FollowUpCreate(BaseModel):
    start: datetime
    duration_minutes: int = 30
    note: Optional[str] = None


class PaymentOut(BaseModel):
    amount: Optional[int] = None
    status: PaymentStatus
    external_ref: Optional[str] = None


class FollowUpOut(BaseModel):
    recommended_appointment_id: UUID
    note: Optional[str] = None


class AppointmentOut(BaseModel):
    """Schema for returning appointment details."""
    id: UUID
    provider_id: UUID
    consumer_id: UUID
    session_kind: SessionKind
    reason: Optional[str] = None
    start: datetime
    duration_minutes: int
    end: datetime
    status: AppointmentStatus
    confirmation_deadline: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    completion_note: Optional[str] = None
    payment: PaymentOut
    follow_up: Optional[FollowUpOut] = None
    follow_up_of_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, appointment) -> "AppointmentOut":
        follow_up = None
        if appointment.follow_up_appointment_id is not None:
            follow_up = FollowUpOut(
                recommended_appointment_id=appointment.follow_up_appointment_id,
                note=appointment.follow_up_note,
            )
        return cls(
            id=appointment.id,
            provider_id=appointment.provider_id,
            consumer_id=appointment.consumer_id,
            session_kind=appointment.session_kind,
            reason=appointment.reason,
            start=appointment.start,
            duration_minutes=appointment.duration_minutes,
            end=appointment.end,
            status=appointment.status,
            confirmation_deadline=appointment.confirmation_deadline,
            cancellation_reason=appointment.cancellation_reason,
            completion_note=appointment.completion_note,
            payment=PaymentOut(
                amount=appointment.payment_amount,
                status=appointment.payment_status,
                external_ref=appointment.payment_external_ref,
            ),
            follow_up=follow_up,
            follow_up_of_id=appointment.follow_up_of_id,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


class AppointmentList(BaseModel):
    appointments: list[AppointmentOut]
    total: int
    limit: int
    skip: int


class PendingConfirmationOut(AppointmentOut):
    minutes_remaining: int


class SlotOut(BaseModel):
    start: datetime
    end: datetime


class OpenSlotsResponse(BaseModel):
    """Schema for available slots response."""
    provider_id: UUID
    date: date
    slots: list[SlotOut] = Field(default_factory=list)
