# clinic_booking/db/models/appointment.py

from __future__ import annotations
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_booking.db.session import Base, BigIntId
from clinic_booking.db.models.patient import Patient
from clinic_booking.db.models.provider import Provider
from clinic_booking.db.models.slot import TimeSlot
from clinic_booking.db.models.treatment import TreatmentType

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        sa.UniqueConstraint("cancel_token", name="uq_appointments_cancel_token"),
        sa.Index("ix_appointments_patient_id", "patient_id"),
        sa.Index("ix_appointments_provider_status", "provider_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("patients.id", ondelete="RESTRICT"), nullable=False
    )
    treatment_type_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("treatment_types.id", ondelete="RESTRICT"), nullable=False
    )
    # NULL = practice-service booking
    provider_id: Mapped[int | None] = mapped_column(
        sa.BigInteger, sa.ForeignKey("providers.id", ondelete="RESTRICT")
    )
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="confirmed")
    notes: Mapped[str | None] = mapped_column(sa.Text)
    language: Mapped[str] = mapped_column(sa.String(8), nullable=False, server_default="de")
    cancel_token: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    cancellation_deadline: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    consent_given: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relations
    patient: Mapped[Patient] = relationship(back_populates="appointments")
    treatment_type: Mapped[TreatmentType] = relationship()
    provider: Mapped[Provider | None] = relationship()
    slot_links: Mapped[list["AppointmentSlot"]] = relationship(
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentSlot.position",
    )


class AppointmentSlot(Base):
    """Ordered slot units held by one appointment (position 0 = start)."""
    __tablename__ = "appointment_slots"
    __table_args__ = (
        sa.Index("ix_appointment_slots_slot_id", "slot_id"),
    )

    appointment_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("appointments.id", ondelete="CASCADE"), primary_key=True
    )
    slot_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("time_slots.id", ondelete="RESTRICT"), primary_key=True
    )
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    appointment: Mapped[Appointment] = relationship(back_populates="slot_links")
    slot: Mapped[TimeSlot] = relationship()
