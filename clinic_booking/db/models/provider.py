# clinic_booking/db/models/provider.py

from __future__ import annotations
from datetime import date, datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_booking.db.session import Base, BigIntId

class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    title: Mapped[str | None] = mapped_column(sa.String(40))
    first_name: Mapped[str] = mapped_column(sa.String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(80), nullable=False)
    specialty: Mapped[str | None] = mapped_column(sa.String(80))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    # Not bookable before this date (new colleagues)
    available_from: Mapped[date | None] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )

    absences: Mapped[list["Absence"]] = relationship(
        back_populates="provider",
        cascade="all, delete-orphan",
    )


class Absence(Base):
    __tablename__ = "provider_absences"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_provider_absences_range"),
        sa.Index("ix_provider_absences_provider_dates", "provider_id", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[str] = mapped_column(sa.String(16), nullable=False, server_default="other")
    note: Mapped[str | None] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )

    provider: Mapped[Provider] = relationship(back_populates="absences")
