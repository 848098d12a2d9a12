# clinic_booking/db/models/reminder.py

from __future__ import annotations
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from clinic_booking.db.session import Base, BigIntId

class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        sa.Index("ix_reminders_due", "sent_at", "scheduled_for"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    appointment_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    # "24h_before" / "6h_before"
    reminder_type: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
