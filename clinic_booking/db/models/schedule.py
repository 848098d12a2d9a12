# clinic_booking/db/models/schedule.py

from __future__ import annotations
import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from clinic_booking.db.session import Base, BigIntId

class PractitionerSchedule(Base):
    """One weekly consultation-hour block of a provider."""

    __tablename__ = "practitioner_schedules"
    __table_args__ = (
        sa.CheckConstraint("end_time > start_time", name="ck_practitioner_schedules_times"),
        sa.CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_practitioner_schedules_weekday"),
        sa.Index("ix_practitioner_schedules_provider_weekday", "provider_id", "weekday"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False
    )
    # 0=Mon .. 6=Sun (date.weekday())
    weekday: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(sa.Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(sa.Time, nullable=False)
    # False = blocked time (surgery, paperwork) inside the opening hours
    is_bookable: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    # "all" or "private_only"
    insurance_filter: Mapped[str] = mapped_column(sa.String(16), nullable=False, server_default="all")
    label: Mapped[str | None] = mapped_column(sa.String(100))
    valid_from: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    valid_until: Mapped[dt.date | None] = mapped_column(sa.Date)
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )
