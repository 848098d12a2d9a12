# clinic_booking/db/models/slot.py

from __future__ import annotations
import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from clinic_booking.db.session import Base, BigIntId

class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        sa.UniqueConstraint("provider_id", "date", "start_time", name="uq_time_slots_provider_date_start"),
        sa.Index("ix_time_slots_date_available", "date", "is_available"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    # NULL = practice-service slot
    provider_id: Mapped[int | None] = mapped_column(
        sa.BigInteger, sa.ForeignKey("providers.id", ondelete="RESTRICT")
    )
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(sa.Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(sa.Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    # "all" or "private_only"
    insurance_filter: Mapped[str] = mapped_column(sa.String(16), nullable=False, server_default="all")
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )
