"""initial booking schema: providers, treatments, slots, patients, appointments, absences, reminders

Revision ID: 20260101_000001
Revises:
Create Date: 2026-01-01 00:00:01.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20260101_000001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BigIntId = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'providers',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(40)),
        sa.Column('first_name', sa.String(80), nullable=False),
        sa.Column('last_name', sa.String(80), nullable=False),
        sa.Column('specialty', sa.String(80)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('available_from', sa.Date()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'treatment_types',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('booking_kind', sa.String(32), nullable=False, server_default='provider'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('duration_minutes > 0', name='ck_treatment_types_duration'),
    )

    op.create_table(
        'patients',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('email', sa.String(100)),
        sa.Column('phone', sa.String(20)),
        sa.Column('private_insurance', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('anonymized_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'time_slots',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('provider_id', sa.BigInteger(), sa.ForeignKey('providers.id', ondelete='RESTRICT')),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('insurance_filter', sa.String(16), nullable=False, server_default='all'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('provider_id', 'date', 'start_time', name='uq_time_slots_provider_date_start'),
    )
    op.create_index('ix_time_slots_date_available', 'time_slots', ['date', 'is_available'])

    op.create_table(
        'appointments',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('patient_id', sa.BigInteger(), sa.ForeignKey('patients.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('treatment_type_id', sa.BigInteger(),
                  sa.ForeignKey('treatment_types.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('provider_id', sa.BigInteger(), sa.ForeignKey('providers.id', ondelete='RESTRICT')),
        sa.Column('status', sa.String(32), nullable=False, server_default='confirmed'),
        sa.Column('notes', sa.Text()),
        sa.Column('language', sa.String(8), nullable=False, server_default='de'),
        sa.Column('cancel_token', sa.String(64), nullable=False),
        sa.Column('cancellation_deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consent_given', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('cancel_token', name='uq_appointments_cancel_token'),
    )
    op.create_index('ix_appointments_patient_id', 'appointments', ['patient_id'])
    op.create_index('ix_appointments_provider_status', 'appointments', ['provider_id', 'status'])

    op.create_table(
        'appointment_slots',
        sa.Column('appointment_id', sa.BigInteger(),
                  sa.ForeignKey('appointments.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('slot_id', sa.BigInteger(), sa.ForeignKey('time_slots.id', ondelete='RESTRICT'), primary_key=True),
        sa.Column('position', sa.Integer(), nullable=False),
    )
    op.create_index('ix_appointment_slots_slot_id', 'appointment_slots', ['slot_id'])

    op.create_table(
        'provider_absences',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('provider_id', sa.BigInteger(), sa.ForeignKey('providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(16), nullable=False, server_default='other'),
        sa.Column('note', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='ck_provider_absences_range'),
    )
    op.create_index('ix_provider_absences_provider_dates', 'provider_absences',
                    ['provider_id', 'start_date', 'end_date'])

    op.create_table(
        'reminders',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('appointment_id', sa.BigInteger(),
                  sa.ForeignKey('appointments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reminder_type', sa.String(16), nullable=False),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_reminders_due', 'reminders', ['sent_at', 'scheduled_for'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_reminders_due', table_name='reminders')
    op.drop_table('reminders')
    op.drop_index('ix_provider_absences_provider_dates', table_name='provider_absences')
    op.drop_table('provider_absences')
    op.drop_index('ix_appointment_slots_slot_id', table_name='appointment_slots')
    op.drop_table('appointment_slots')
    op.drop_index('ix_appointments_provider_status', table_name='appointments')
    op.drop_index('ix_appointments_patient_id', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('ix_time_slots_date_available', table_name='time_slots')
    op.drop_table('time_slots')
    op.drop_table('patients')
    op.drop_table('treatment_types')
    op.drop_table('providers')
