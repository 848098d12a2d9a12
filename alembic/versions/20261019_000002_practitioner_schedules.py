"""practitioner weekly schedules driving slot generation

Revision ID: 20261019_000002
Revises: 20260101_000001
Create Date: 2026-10-19 00:00:02.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000002'
down_revision: Union[str, Sequence[str], None] = '20260101_000001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BigIntId = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'practitioner_schedules',
        sa.Column('id', BigIntId, primary_key=True, autoincrement=True),
        sa.Column('provider_id', sa.BigInteger(), sa.ForeignKey('providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('weekday', sa.SmallInteger(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_bookable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('insurance_filter', sa.String(16), nullable=False, server_default='all'),
        sa.Column('label', sa.String(100)),
        sa.Column('valid_from', sa.Date(), nullable=False),
        sa.Column('valid_until', sa.Date()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('end_time > start_time', name='ck_practitioner_schedules_times'),
        sa.CheckConstraint('weekday >= 0 AND weekday <= 6', name='ck_practitioner_schedules_weekday'),
    )
    op.create_index('ix_practitioner_schedules_provider_weekday', 'practitioner_schedules',
                    ['provider_id', 'weekday'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_practitioner_schedules_provider_weekday', table_name='practitioner_schedules')
    op.drop_table('practitioner_schedules')
