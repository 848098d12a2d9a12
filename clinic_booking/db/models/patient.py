# clinic_booking/db/models/patient.py

from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_booking.db.session import Base, BigIntId

if TYPE_CHECKING:
    from clinic_booking.db.models.appointment import Appointment

class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(sa.String(100))
    phone: Mapped[str | None] = mapped_column(sa.String(20))
    private_insurance: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    # Set once personal fields have been scrubbed
    anonymized_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )

    appointments: Mapped[list["Appointment"]] = relationship(back_populates="patient")
