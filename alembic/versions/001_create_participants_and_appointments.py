"""create participants and appointments tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

APPOINTMENT_STATUSES = (
    'pending-payment', 'pending-provider-confirmation', 'scheduled', 'completed', 'canceled', 'no-show',
)


def upgrade() -> None:
    op.create_table(
        'participants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('kind', sa.Enum('provider', 'consumer', name='participantkind'), nullable=False, index=True),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('timezone_offset_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('weekly_availability', sa.JSON(), nullable=True),
        sa.Column('session_rate', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'appointments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('provider_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('participants.id'), nullable=False),
        sa.Column('consumer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('participants.id'), nullable=False),
        sa.Column('session_kind', sa.Enum('video', 'audio', 'chat', name='sessionkind'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', sa.Enum(*APPOINTMENT_STATUSES, name='appointmentstatus'), nullable=False),
        sa.Column('confirmation_deadline', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('completion_note', sa.Text(), nullable=True),
        sa.Column('payment_amount', sa.Integer(), nullable=True),
        sa.Column('payment_status', sa.Enum('pending', 'completed', 'refunded', name='paymentstatus'), nullable=False),
        sa.Column('payment_external_ref', sa.String(), nullable=True),
        sa.Column('follow_up_of_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('appointments.id'), nullable=True, index=True),
        sa.Column('follow_up_appointment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('follow_up_note', sa.Text(), nullable=True),
        sa.Column('reminder_sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_appointments_provider_status_start', 'appointments', ['provider_id', 'status', 'start_time'])
    op.create_index('ix_appointments_consumer_start', 'appointments', ['consumer_id', 'start_time'])
    op.create_index('ix_appointments_status_deadline', 'appointments', ['status', 'confirmation_deadline'])
    op.create_index('ix_appointments_status_end', 'appointments', ['status', 'end_time'])
    op.create_index('ix_appointments_status_created', 'appointments', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_appointments_status_created', table_name='appointments')
    op.drop_index('ix_appointments_status_end', table_name='appointments')
    op.drop_index('ix_appointments_status_deadline', table_name='appointments')
    op.drop_index('ix_appointments_consumer_start', table_name='appointments')
    op.drop_index('ix_appointments_provider_status_start', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('participants')
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('DROP TYPE appointmentstatus')
        op.execute('DROP TYPE paymentstatus')
        op.execute('DROP TYPE sessionkind')
        op.execute('DROP TYPE participantkind')
