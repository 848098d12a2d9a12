# clinic_booking/db/models/treatment.py

from __future__ import annotations
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from clinic_booking.db.session import Base, BigIntId

class TreatmentType(Base):
    __tablename__ = "treatment_types"
    __table_args__ = (
        sa.CheckConstraint("duration_minutes > 0", name="ck_treatment_types_duration"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="10")
    # "provider" or "practice_service"
    booking_kind: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="provider")
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )
