# clinic_booking/crud/sql_store.py
"""
SQLAlchemy implementation of the booking store.

Reservation is a single conditional UPDATE over the wanted slot ids; the
transaction is rolled back with SlotConflict unless every row flipped from
available to taken. Status transitions are compare-and-set on the status
column. Datetimes are written in UTC so SQLite and Postgres compare alike.

Every transaction runs under the store timeout and is retried on
TransientStoreError. Writes commit in their own retried unit and the
resulting aggregate is re-read in a separate one, so a slow read-back never
repeats a committed write.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncIterator, Iterable, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from clinic_booking.core.business import PracticeCalendar, default_calendar, iter_days, plan_slots
from clinic_booking.core.errors import (
    AlreadyCancelled,
    InvalidTransition,
    NotFound,
    SlotConflict,
    TransientStoreError,
)
from clinic_booking.core.logging import get_logger
from clinic_booking.db.models.appointment import Appointment, AppointmentSlot
from clinic_booking.db.models.patient import Patient
from clinic_booking.db.models.provider import Absence, Provider
from clinic_booking.db.models.reminder import Reminder
from clinic_booking.db.models.schedule import PractitionerSchedule
from clinic_booking.db.models.slot import TimeSlot
from clinic_booking.db.models.treatment import TreatmentType
from clinic_booking.schemas.booking import (
    ANONYMIZED_NAME,
    AbsenceCreate,
    AbsenceView,
    AppointmentStatus,
    AppointmentView,
    NewAppointment,
    PatientView,
    ProviderView,
    ReminderType,
    ReminderView,
    ScheduleEntryCreate,
    ScheduleEntryView,
    TimeSlotView,
    TreatmentView,
)
from clinic_booking.utils.retry import retry_transient

logger = get_logger(__name__)


def _utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _patient_view(p: Patient) -> PatientView:
    return PatientView(
        id=p.id, name=p.name, email=p.email, phone=p.phone,
        private_insurance=p.private_insurance, anonymized_at=_aware(p.anonymized_at),
    )


def _appointment_view(appt: Appointment) -> AppointmentView:
    return AppointmentView(
        id=appt.id,
        patient=_patient_view(appt.patient),
        treatment=TreatmentView.model_validate(appt.treatment_type),
        provider=ProviderView.model_validate(appt.provider) if appt.provider else None,
        slots=[TimeSlotView.model_validate(link.slot) for link in appt.slot_links],
        status=AppointmentStatus(appt.status),
        notes=appt.notes,
        language=appt.language,
        cancel_token=appt.cancel_token,
        cancellation_deadline=_aware(appt.cancellation_deadline),
        consent_given=appt.consent_given,
        created_at=_aware(appt.created_at),
    )


def _reminder_view(r: Reminder) -> ReminderView:
    return ReminderView(
        id=r.id, appointment_id=r.appointment_id, reminder_type=ReminderType(r.reminder_type),
        scheduled_for=_aware(r.scheduled_for), sent_at=_aware(r.sent_at),
    )


def _with_details(stmt):
    return stmt.options(
        selectinload(Appointment.patient),
        selectinload(Appointment.treatment_type),
        selectinload(Appointment.provider),
        selectinload(Appointment.slot_links).selectinload(AppointmentSlot.slot),
    )


async def reserve_slots(session: AsyncSession, slot_ids: Sequence[int]) -> None:
    """Flip every slot to taken in one statement or raise SlotConflict."""
    wanted = sorted(set(slot_ids))
    if not wanted:
        return
    result = await session.execute(
        sa.update(TimeSlot)
        .where(TimeSlot.id.in_(wanted), TimeSlot.is_available == sa.true())
        .values(is_available=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(wanted):
        raise SlotConflict(details={"slot_ids": wanted})


async def release_slots(session: AsyncSession, slot_ids: Iterable[int]) -> None:
    ids = sorted(set(slot_ids))
    if not ids:
        return
    await session.execute(
        sa.update(TimeSlot)
        .where(TimeSlot.id.in_(ids))
        .values(is_available=True)
        .execution_options(synchronize_session=False)
    )


class SqlBookingStore:

    def __init__(self, session_factory: async_sessionmaker, calendar: Optional[PracticeCalendar] = None):
        self.session_factory = session_factory
        self.calendar = calendar or default_calendar

    @asynccontextmanager
    async def _unit(self) -> AsyncIterator[AsyncSession]:
        """One transaction; connectivity failures surface as TransientStoreError."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError, asyncio.TimeoutError, ConnectionError) as e:
            logger.warning("store_transient_failure", error=str(e), error_type=type(e).__name__)
            raise TransientStoreError(str(e)) from e
        except IntegrityError as e:
            if "cancel_token" in str(e.orig):
                raise TransientStoreError("cancel token collision") from e
            raise

    # ---------- reference data ----------

    @retry_transient()
    async def get_treatment(self, treatment_id: int) -> Optional[TreatmentView]:
        async with self._unit() as session:
            row = await session.get(TreatmentType, treatment_id)
            return TreatmentView.model_validate(row) if row else None

    @retry_transient()
    async def list_treatments(self, *, booking_kind: Optional[str] = None,
                              active_only: bool = True) -> list[TreatmentView]:
        q = sa.select(TreatmentType).order_by(TreatmentType.name.asc(), TreatmentType.id.asc())
        if booking_kind is not None:
            q = q.where(TreatmentType.booking_kind == booking_kind)
        if active_only:
            q = q.where(TreatmentType.is_active == sa.true())
        async with self._unit() as session:
            rows = (await session.execute(q)).scalars().all()
            return [TreatmentView.model_validate(r) for r in rows]

    @retry_transient()
    async def get_provider(self, provider_id: int) -> Optional[ProviderView]:
        async with self._unit() as session:
            row = await session.get(Provider, provider_id)
            return ProviderView.model_validate(row) if row else None

    @retry_transient()
    async def list_providers(self, *, active_only: bool = True) -> list[ProviderView]:
        q = sa.select(Provider).order_by(Provider.last_name.asc(), Provider.id.asc())
        if active_only:
            q = q.where(Provider.is_active == sa.true())
        async with self._unit() as session:
            rows = (await session.execute(q)).scalars().all()
            return [ProviderView.model_validate(r) for r in rows]

    # ---------- weekly schedules ----------

    @retry_transient(attempts=1)
    async def create_schedule_entry(self, data: ScheduleEntryCreate) -> ScheduleEntryView:
        async with self._unit() as session:
            row = PractitionerSchedule(**data.model_dump())
            session.add(row)
            await session.flush()
            return ScheduleEntryView.model_validate(row)

    @retry_transient()
    async def list_schedule_entries(self, *, provider_id: Optional[int] = None) -> list[ScheduleEntryView]:
        q = sa.select(PractitionerSchedule).order_by(
            PractitionerSchedule.provider_id.asc(),
            PractitionerSchedule.weekday.asc(),
            PractitionerSchedule.start_time.asc(),
            PractitionerSchedule.id.asc(),
        )
        if provider_id is not None:
            q = q.where(PractitionerSchedule.provider_id == provider_id)
        async with self._unit() as session:
            rows = (await session.execute(q)).scalars().all()
            return [ScheduleEntryView.model_validate(r) for r in rows]

    @retry_transient()
    async def delete_schedule_entry(self, entry_id: int) -> bool:
        async with self._unit() as session:
            result = await session.execute(
                sa.delete(PractitionerSchedule).where(PractitionerSchedule.id == entry_id)
            )
            return result.rowcount == 1

    # ---------- slots ----------

    @retry_transient()
    async def get_slot(self, slot_id: int) -> Optional[TimeSlotView]:
        async with self._unit() as session:
            row = await session.get(TimeSlot, slot_id)
            return TimeSlotView.model_validate(row) if row else None

    @retry_transient()
    async def list_slots(self, start: date, end: date, *, provider_id: Optional[int] = None,
                         any_provider: bool = False, available_only: bool = False) -> list[TimeSlotView]:
        q = sa.select(TimeSlot).where(TimeSlot.date >= start, TimeSlot.date <= end)
        if not any_provider:
            q = q.where(TimeSlot.provider_id.is_(None) if provider_id is None else TimeSlot.provider_id == provider_id)
        if available_only:
            q = q.where(TimeSlot.is_available == sa.true())
        q = q.order_by(
            TimeSlot.provider_id.is_(None).asc(), TimeSlot.provider_id.asc(),
            TimeSlot.date.asc(), TimeSlot.start_time.asc(),
        )
        async with self._unit() as session:
            rows = (await session.execute(q)).scalars().all()
            return [TimeSlotView.model_validate(r) for r in rows]

    @retry_transient()
    async def generate_slots(self, start: date, end: date, unit_minutes: int) -> int:
        async with self._unit() as session:
            existing = {
                tuple(row) for row in (await session.execute(
                    sa.select(TimeSlot.provider_id, TimeSlot.date, TimeSlot.start_time)
                    .where(TimeSlot.date >= start, TimeSlot.date <= end)
                )).all()
            }
            owners: list[Optional[int]] = list(
                (await session.execute(sa.select(Provider.id).where(Provider.is_active == sa.true()))).scalars()
            )
            owners.append(None)

            schedules: dict[int, list[ScheduleEntryView]] = {}
            for row in (await session.execute(sa.select(PractitionerSchedule))).scalars():
                schedules.setdefault(row.provider_id, []).append(ScheduleEntryView.model_validate(row))

            new_slots = []
            for owner in owners:
                # Providers without a weekly schedule and the practice service follow opening hours
                schedule = schedules.get(owner) if owner is not None else None
                for day in iter_days(start, end):
                    for slot_start, slot_end, insurance in plan_slots(self.calendar, day, unit_minutes, schedule):
                        if (owner, day, slot_start) in existing:
                            continue
                        new_slots.append(TimeSlot(
                            provider_id=owner, date=day, start_time=slot_start,
                            end_time=slot_end, is_available=True, insurance_filter=insurance,
                        ))
            session.add_all(new_slots)
            return len(new_slots)

    # ---------- appointments ----------

    async def create_appointment(self, draft: NewAppointment, slot_ids: Sequence[int]) -> AppointmentView:
        appointment_id = await self._insert_appointment(draft, slot_ids)
        return await self.get_appointment(appointment_id)

    @retry_transient(operation="create_appointment")
    async def _insert_appointment(self, draft: NewAppointment, slot_ids: Sequence[int]) -> int:
        async with self._unit() as session:
            await reserve_slots(session, slot_ids)

            patient = Patient(
                name=draft.patient.name,
                email=draft.patient.email,
                phone=draft.patient.phone,
                private_insurance=draft.patient.private_insurance,
            )
            session.add(patient)
            await session.flush()

            appt = Appointment(
                patient_id=patient.id,
                treatment_type_id=draft.treatment_type_id,
                provider_id=draft.provider_id,
                status=draft.status.value,
                notes=draft.notes,
                language=draft.language,
                cancel_token=draft.cancel_token,
                cancellation_deadline=_utc(draft.cancellation_deadline),
                consent_given=draft.consent_given,
            )
            session.add(appt)
            await session.flush()

            session.add_all(
                AppointmentSlot(appointment_id=appt.id, slot_id=sid, position=i)
                for i, sid in enumerate(slot_ids)
            )
            return appt.id

    @retry_transient()
    async def get_appointment(self, appointment_id: int) -> Optional[AppointmentView]:
        async with self._unit() as session:
            row = (await session.execute(
                _with_details(sa.select(Appointment).where(Appointment.id == appointment_id))
            )).scalar_one_or_none()
            return _appointment_view(row) if row else None

    @retry_transient()
    async def find_by_cancel_token(self, token: str) -> Optional[AppointmentView]:
        async with self._unit() as session:
            row = (await session.execute(
                _with_details(sa.select(Appointment).where(Appointment.cancel_token == token))
            )).scalar_one_or_none()
            return _appointment_view(row) if row else None

    @retry_transient()
    async def list_appointments(self, start: date, end: date, *, provider_id: Optional[int] = None,
                                statuses: Optional[Iterable[AppointmentStatus]] = None) -> list[AppointmentView]:
        q = (
            sa.select(Appointment)
            .join(AppointmentSlot, sa.and_(
                AppointmentSlot.appointment_id == Appointment.id, AppointmentSlot.position == 0,
            ))
            .join(TimeSlot, TimeSlot.id == AppointmentSlot.slot_id)
            .where(TimeSlot.date >= start, TimeSlot.date <= end)
        )
        if provider_id is not None:
            q = q.where(Appointment.provider_id == provider_id)
        if statuses is not None:
            q = q.where(Appointment.status.in_([AppointmentStatus(s).value for s in statuses]))
        q = q.order_by(TimeSlot.date.asc(), TimeSlot.start_time.asc(), Appointment.id.asc())

        async with self._unit() as session:
            rows = (await session.execute(_with_details(q))).scalars().all()
            return [_appointment_view(r) for r in rows]

    async def transition_status(self, appointment_id: int, expected: Iterable[AppointmentStatus],
                                new_status: AppointmentStatus) -> Optional[AppointmentView]:
        if not await self._apply_transition(appointment_id, list(expected), new_status):
            return None
        return await self.get_appointment(appointment_id)

    @retry_transient(operation="transition_status")
    async def _apply_transition(self, appointment_id: int, expected: list[AppointmentStatus],
                                new_status: AppointmentStatus) -> bool:
        async with self._unit() as session:
            result = await session.execute(
                sa.update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.status.in_([AppointmentStatus(s).value for s in expected]),
                )
                .values(status=new_status.value, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            if new_status == AppointmentStatus.CANCELLED:
                held = (await session.execute(
                    sa.select(AppointmentSlot.slot_id).where(AppointmentSlot.appointment_id == appointment_id)
                )).scalars().all()
                await release_slots(session, held)
            return True

    async def swap_slots(self, appointment_id: int, new_slot_ids: Sequence[int], *,
                         expected: Iterable[AppointmentStatus],
                         cancellation_deadline: datetime) -> AppointmentView:
        await self._swap(appointment_id, list(new_slot_ids), list(expected), cancellation_deadline)
        return await self.get_appointment(appointment_id)

    @retry_transient(operation="swap_slots")
    async def _swap(self, appointment_id: int, new_slot_ids: list[int],
                    expected: list[AppointmentStatus], cancellation_deadline: datetime) -> None:
        async with self._unit() as session:
            # Conditional touch locks the row and proves the status is still movable
            result = await session.execute(
                sa.update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.status.in_([AppointmentStatus(s).value for s in expected]),
                )
                .values(cancellation_deadline=_utc(cancellation_deadline),
                        updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                status = (await session.execute(
                    sa.select(Appointment.status).where(Appointment.id == appointment_id)
                )).scalar_one_or_none()
                if status is None:
                    raise NotFound(error_key="appointment.notFound")
                if status == AppointmentStatus.CANCELLED.value:
                    raise AlreadyCancelled(error_key="appointment.alreadyCancelled")
                raise InvalidTransition()

            old_ids = (await session.execute(
                sa.select(AppointmentSlot.slot_id).where(AppointmentSlot.appointment_id == appointment_id)
            )).scalars().all()
            keep = set(new_slot_ids)

            # Reserve first, release after: the appointment never holds zero slots
            await reserve_slots(session, [sid for sid in new_slot_ids if sid not in set(old_ids)])
            await release_slots(session, [sid for sid in old_ids if sid not in keep])

            await session.execute(
                sa.delete(AppointmentSlot).where(AppointmentSlot.appointment_id == appointment_id)
            )
            session.add_all(
                AppointmentSlot(appointment_id=appointment_id, slot_id=sid, position=i)
                for i, sid in enumerate(new_slot_ids)
            )

    # ---------- patients ----------

    @retry_transient()
    async def get_patient(self, patient_id: int) -> Optional[PatientView]:
        async with self._unit() as session:
            row = await session.get(Patient, patient_id)
            return _patient_view(row) if row else None

    @retry_transient()
    async def patient_statuses(self, patient_id: int) -> list[AppointmentStatus]:
        async with self._unit() as session:
            rows = (await session.execute(
                sa.select(Appointment.status).where(Appointment.patient_id == patient_id)
            )).scalars().all()
            return [AppointmentStatus(s) for s in rows]

    async def anonymize_patient(self, patient_id: int, at: datetime) -> Optional[PatientView]:
        if not await self._scrub_patient(patient_id, at):
            return None
        return await self.get_patient(patient_id)

    @retry_transient(operation="anonymize_patient")
    async def _scrub_patient(self, patient_id: int, at: datetime) -> bool:
        async with self._unit() as session:
            result = await session.execute(
                sa.update(Patient)
                .where(Patient.id == patient_id)
                .values(name=ANONYMIZED_NAME, email=None, phone=None, anonymized_at=_utc(at))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ---------- absences ----------

    # Timeout only: a repeated insert would duplicate the absence
    @retry_transient(attempts=1)
    async def create_absence(self, data: AbsenceCreate) -> AbsenceView:
        async with self._unit() as session:
            row = Absence(**data.model_dump())
            session.add(row)
            await session.flush()
            return AbsenceView.model_validate(row)

    @retry_transient()
    async def get_absence(self, absence_id: int) -> Optional[AbsenceView]:
        async with self._unit() as session:
            row = await session.get(Absence, absence_id)
            return AbsenceView.model_validate(row) if row else None

    @retry_transient()
    async def list_absences(self, *, provider_id: Optional[int] = None, start: Optional[date] = None,
                            end: Optional[date] = None) -> list[AbsenceView]:
        q = sa.select(Absence)
        if provider_id is not None:
            q = q.where(Absence.provider_id == provider_id)
        if end is not None:
            q = q.where(Absence.start_date <= end)
        if start is not None:
            q = q.where(Absence.end_date >= start)
        q = q.order_by(Absence.start_date.asc(), Absence.id.asc())
        async with self._unit() as session:
            rows = (await session.execute(q)).scalars().all()
            return [AbsenceView.model_validate(r) for r in rows]

    @retry_transient()
    async def delete_absence(self, absence_id: int) -> bool:
        async with self._unit() as session:
            result = await session.execute(sa.delete(Absence).where(Absence.id == absence_id))
            return result.rowcount == 1

    # ---------- reminders ----------

    @retry_transient()
    async def replace_reminders(self, appointment_id: int,
                                schedule: Sequence[tuple[ReminderType, datetime]]) -> list[ReminderView]:
        async with self._unit() as session:
            await session.execute(
                sa.delete(Reminder).where(
                    Reminder.appointment_id == appointment_id, Reminder.sent_at.is_(None),
                )
            )
            rows = [
                Reminder(appointment_id=appointment_id, reminder_type=rt.value, scheduled_for=_utc(when))
                for rt, when in schedule
            ]
            session.add_all(rows)
            await session.flush()
            return [_reminder_view(r) for r in rows]

    @retry_transient()
    async def due_reminders(self, now: datetime, limit: int = 50) -> list[ReminderView]:
        q = (
            sa.select(Reminder)
            .where(Reminder.sent_at.is_(None), Reminder.scheduled_for <= _utc(now))
            .order_by(Reminder.scheduled_for.asc(), Reminder.id.asc())
            .limit(limit)
        )
        async with self._unit() as session:
            rows = (await session.execute(q)).scalars().all()
            return [_reminder_view(r) for r in rows]

    @retry_transient()
    async def mark_reminder_sent(self, reminder_id: int, at: datetime) -> None:
        async with self._unit() as session:
            await session.execute(
                sa.update(Reminder).where(Reminder.id == reminder_id).values(sent_at=_utc(at))
            )

    @retry_transient()
    async def ping(self) -> bool:
        async with self._unit() as session:
            await session.execute(sa.text("SELECT 1"))
            return True
