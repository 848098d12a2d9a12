# clinic_booking/crud/memory.py
"""
In-memory booking store for offline mode and tests.

Every mutation runs under a single asyncio.Lock, so concurrent reservations
racing for the same slots have exactly one winner, mirroring the conditional
UPDATE used by the SQL store.
"""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional, Sequence

from clinic_booking.core.business import PracticeCalendar, default_calendar, iter_days, plan_slots
from clinic_booking.core.errors import (
    AlreadyCancelled,
    InvalidTransition,
    NotFound,
    SlotConflict,
    TransientStoreError,
)
from clinic_booking.core.logging import get_logger
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

logger = get_logger(__name__)


@dataclass
class _AppointmentRow:
    id: int
    patient_id: int
    treatment_type_id: int
    provider_id: Optional[int]
    status: AppointmentStatus
    slot_ids: list[int]
    cancel_token: str
    cancellation_deadline: datetime
    notes: Optional[str] = None
    language: str = "de"
    consent_given: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryBookingStore:

    def __init__(self, calendar: Optional[PracticeCalendar] = None):
        self.calendar = calendar or default_calendar
        self._lock = asyncio.Lock()
        self._seq = {name: itertools.count(1) for name in (
            "provider", "treatment", "slot", "patient", "appointment", "absence", "reminder", "schedule",
        )}
        self.providers: dict[int, ProviderView] = {}
        self.treatments: dict[int, TreatmentView] = {}
        self.slots: dict[int, TimeSlotView] = {}
        self.patients: dict[int, PatientView] = {}
        self.appointments: dict[int, _AppointmentRow] = {}
        self.absences: dict[int, AbsenceView] = {}
        self.reminders: dict[int, ReminderView] = {}
        self.schedules: dict[int, ScheduleEntryView] = {}

    # ---------- seeding helpers ----------

    def add_provider(self, first_name: str, last_name: str, *, title: Optional[str] = None,
                     specialty: Optional[str] = None, is_active: bool = True,
                     available_from: Optional[date] = None) -> ProviderView:
        provider = ProviderView(
            id=next(self._seq["provider"]), title=title, first_name=first_name,
            last_name=last_name, specialty=specialty, is_active=is_active,
            available_from=available_from,
        )
        self.providers[provider.id] = provider
        return provider

    def add_treatment(self, name: str, duration_minutes: int, *,
                      booking_kind: str = "provider", is_active: bool = True) -> TreatmentView:
        treatment = TreatmentView(
            id=next(self._seq["treatment"]), name=name, duration_minutes=duration_minutes,
            booking_kind=booking_kind, is_active=is_active,
        )
        self.treatments[treatment.id] = treatment
        return treatment

    def add_slot(self, provider_id: Optional[int], day: date, start: time, end: time, *,
                 is_available: bool = True, insurance_filter: str = "all") -> TimeSlotView:
        slot = TimeSlotView(
            id=next(self._seq["slot"]), provider_id=provider_id, date=day,
            start_time=start, end_time=end, is_available=is_available,
            insurance_filter=insurance_filter,
        )
        self.slots[slot.id] = slot
        return slot

    # ---------- internal ----------

    def _view(self, row: _AppointmentRow) -> AppointmentView:
        provider = self.providers.get(row.provider_id) if row.provider_id is not None else None
        return AppointmentView(
            id=row.id,
            patient=self.patients[row.patient_id].model_copy(),
            treatment=self.treatments[row.treatment_type_id].model_copy(),
            provider=provider.model_copy() if provider else None,
            slots=[self.slots[sid].model_copy() for sid in row.slot_ids],
            status=row.status,
            notes=row.notes,
            language=row.language,
            cancel_token=row.cancel_token,
            cancellation_deadline=row.cancellation_deadline,
            consent_given=row.consent_given,
            created_at=row.created_at,
        )

    def _set_available(self, slot_ids: Iterable[int], available: bool) -> None:
        for sid in slot_ids:
            self.slots[sid] = self.slots[sid].model_copy(update={"is_available": available})

    def _check_free(self, slot_ids: Iterable[int]) -> None:
        taken = [sid for sid in slot_ids if sid not in self.slots or not self.slots[sid].is_available]
        if taken:
            raise SlotConflict(details={"slot_ids": taken})

    # ---------- reference data ----------

    async def get_treatment(self, treatment_id: int) -> Optional[TreatmentView]:
        treatment = self.treatments.get(treatment_id)
        return treatment.model_copy() if treatment else None

    async def get_provider(self, provider_id: int) -> Optional[ProviderView]:
        provider = self.providers.get(provider_id)
        return provider.model_copy() if provider else None

    async def list_treatments(self, *, booking_kind: Optional[str] = None,
                              active_only: bool = True) -> list[TreatmentView]:
        found = [
            t.model_copy() for t in self.treatments.values()
            if (booking_kind is None or t.booking_kind == booking_kind)
            and (t.is_active or not active_only)
        ]
        found.sort(key=lambda t: (t.name, t.id))
        return found

    async def list_providers(self, *, active_only: bool = True) -> list[ProviderView]:
        found = [p.model_copy() for p in self.providers.values() if p.is_active or not active_only]
        found.sort(key=lambda p: (p.last_name, p.id))
        return found

    # ---------- weekly schedules ----------

    async def create_schedule_entry(self, data: ScheduleEntryCreate) -> ScheduleEntryView:
        async with self._lock:
            entry = ScheduleEntryView(id=next(self._seq["schedule"]), **data.model_dump())
            self.schedules[entry.id] = entry
            return entry.model_copy()

    async def list_schedule_entries(self, *, provider_id: Optional[int] = None) -> list[ScheduleEntryView]:
        found = [
            e.model_copy() for e in self.schedules.values()
            if provider_id is None or e.provider_id == provider_id
        ]
        found.sort(key=lambda e: (e.provider_id, e.weekday, e.start_time, e.id))
        return found

    async def delete_schedule_entry(self, entry_id: int) -> bool:
        async with self._lock:
            return self.schedules.pop(entry_id, None) is not None

    # ---------- slots ----------

    async def get_slot(self, slot_id: int) -> Optional[TimeSlotView]:
        slot = self.slots.get(slot_id)
        return slot.model_copy() if slot else None

    async def list_slots(self, start: date, end: date, *, provider_id: Optional[int] = None,
                         any_provider: bool = False, available_only: bool = False) -> list[TimeSlotView]:
        found = [
            s.model_copy() for s in self.slots.values()
            if start <= s.date <= end
            and (any_provider or s.provider_id == provider_id)
            and (s.is_available or not available_only)
        ]
        found.sort(key=lambda s: (s.provider_id is None, s.provider_id or 0, s.date, s.start_time))
        return found

    async def generate_slots(self, start: date, end: date, unit_minutes: int) -> int:
        async with self._lock:
            existing = {(s.provider_id, s.date, s.start_time) for s in self.slots.values()}
            owners: list[Optional[int]] = [p.id for p in self.providers.values() if p.is_active]
            owners.append(None)
            schedules: dict[int, list[ScheduleEntryView]] = {}
            for entry in self.schedules.values():
                schedules.setdefault(entry.provider_id, []).append(entry)
            created = 0
            for owner in owners:
                schedule = schedules.get(owner) if owner is not None else None
                for day in iter_days(start, end):
                    for slot_start, slot_end, insurance in plan_slots(self.calendar, day, unit_minutes, schedule):
                        if (owner, day, slot_start) in existing:
                            continue
                        self.add_slot(owner, day, slot_start, slot_end, insurance_filter=insurance)
                        created += 1
            return created

    # ---------- appointments ----------

    async def create_appointment(self, draft: NewAppointment, slot_ids: Sequence[int]) -> AppointmentView:
        async with self._lock:
            self._check_free(slot_ids)
            if any(r.cancel_token == draft.cancel_token for r in self.appointments.values()):
                raise TransientStoreError("cancel token collision")

            self._set_available(slot_ids, False)
            patient = PatientView(
                id=next(self._seq["patient"]),
                name=draft.patient.name,
                email=draft.patient.email,
                phone=draft.patient.phone,
                private_insurance=draft.patient.private_insurance,
            )
            self.patients[patient.id] = patient
            row = _AppointmentRow(
                id=next(self._seq["appointment"]),
                patient_id=patient.id,
                treatment_type_id=draft.treatment_type_id,
                provider_id=draft.provider_id,
                status=draft.status,
                slot_ids=list(slot_ids),
                cancel_token=draft.cancel_token,
                cancellation_deadline=draft.cancellation_deadline,
                notes=draft.notes,
                language=draft.language,
                consent_given=draft.consent_given,
            )
            self.appointments[row.id] = row
            return self._view(row)

    async def get_appointment(self, appointment_id: int) -> Optional[AppointmentView]:
        row = self.appointments.get(appointment_id)
        return self._view(row) if row else None

    async def find_by_cancel_token(self, token: str) -> Optional[AppointmentView]:
        for row in self.appointments.values():
            if row.cancel_token == token:
                return self._view(row)
        return None

    async def list_appointments(self, start: date, end: date, *, provider_id: Optional[int] = None,
                                statuses: Optional[Iterable[AppointmentStatus]] = None) -> list[AppointmentView]:
        wanted = set(statuses) if statuses is not None else None
        rows = [
            r for r in self.appointments.values()
            if start <= self.slots[r.slot_ids[0]].date <= end
            and (provider_id is None or r.provider_id == provider_id)
            and (wanted is None or r.status in wanted)
        ]
        views = [self._view(r) for r in rows]
        views.sort(key=lambda v: (v.date, v.start_time, v.id))
        return views

    async def transition_status(self, appointment_id: int, expected: Iterable[AppointmentStatus],
                                new_status: AppointmentStatus) -> Optional[AppointmentView]:
        async with self._lock:
            row = self.appointments.get(appointment_id)
            if row is None or row.status not in set(expected):
                return None
            row.status = new_status
            if new_status == AppointmentStatus.CANCELLED:
                self._set_available(row.slot_ids, True)
            return self._view(row)

    async def swap_slots(self, appointment_id: int, new_slot_ids: Sequence[int], *,
                         expected: Iterable[AppointmentStatus],
                         cancellation_deadline: datetime) -> AppointmentView:
        async with self._lock:
            row = self.appointments.get(appointment_id)
            if row is None:
                raise NotFound(error_key="appointment.notFound")
            if row.status not in set(expected):
                if row.status == AppointmentStatus.CANCELLED:
                    raise AlreadyCancelled(error_key="appointment.alreadyCancelled")
                raise InvalidTransition()

            old = set(row.slot_ids)
            to_reserve = [sid for sid in new_slot_ids if sid not in old]
            self._check_free(to_reserve)

            self._set_available(to_reserve, False)
            self._set_available([sid for sid in row.slot_ids if sid not in set(new_slot_ids)], True)
            row.slot_ids = list(new_slot_ids)
            row.cancellation_deadline = cancellation_deadline
            return self._view(row)

    # ---------- patients ----------

    async def get_patient(self, patient_id: int) -> Optional[PatientView]:
        patient = self.patients.get(patient_id)
        return patient.model_copy() if patient else None

    async def patient_statuses(self, patient_id: int) -> list[AppointmentStatus]:
        return [r.status for r in self.appointments.values() if r.patient_id == patient_id]

    async def anonymize_patient(self, patient_id: int, at: datetime) -> Optional[PatientView]:
        async with self._lock:
            patient = self.patients.get(patient_id)
            if patient is None:
                return None
            patient = patient.model_copy(update={
                "name": ANONYMIZED_NAME, "email": None, "phone": None, "anonymized_at": at,
            })
            self.patients[patient_id] = patient
            return patient.model_copy()

    # ---------- absences ----------

    async def create_absence(self, data: AbsenceCreate) -> AbsenceView:
        async with self._lock:
            absence = AbsenceView(id=next(self._seq["absence"]), **data.model_dump())
            self.absences[absence.id] = absence
            return absence.model_copy()

    async def get_absence(self, absence_id: int) -> Optional[AbsenceView]:
        absence = self.absences.get(absence_id)
        return absence.model_copy() if absence else None

    async def list_absences(self, *, provider_id: Optional[int] = None, start: Optional[date] = None,
                            end: Optional[date] = None) -> list[AbsenceView]:
        found = [
            a.model_copy() for a in self.absences.values()
            if (provider_id is None or a.provider_id == provider_id)
            and (end is None or a.start_date <= end)
            and (start is None or a.end_date >= start)
        ]
        found.sort(key=lambda a: (a.start_date, a.id))
        return found

    async def delete_absence(self, absence_id: int) -> bool:
        async with self._lock:
            return self.absences.pop(absence_id, None) is not None

    # ---------- reminders ----------

    async def replace_reminders(self, appointment_id: int,
                                schedule: Sequence[tuple[ReminderType, datetime]]) -> list[ReminderView]:
        async with self._lock:
            stale = [rid for rid, r in self.reminders.items()
                     if r.appointment_id == appointment_id and r.sent_at is None]
            for rid in stale:
                del self.reminders[rid]
            created = []
            for reminder_type, scheduled_for in schedule:
                reminder = ReminderView(
                    id=next(self._seq["reminder"]), appointment_id=appointment_id,
                    reminder_type=reminder_type, scheduled_for=scheduled_for,
                )
                self.reminders[reminder.id] = reminder
                created.append(reminder.model_copy())
            return created

    async def due_reminders(self, now: datetime, limit: int = 50) -> list[ReminderView]:
        due = [r.model_copy() for r in self.reminders.values() if r.sent_at is None and r.scheduled_for <= now]
        due.sort(key=lambda r: (r.scheduled_for, r.id))
        return due[:limit]

    async def mark_reminder_sent(self, reminder_id: int, at: datetime) -> None:
        async with self._lock:
            reminder = self.reminders.get(reminder_id)
            if reminder is not None:
                self.reminders[reminder_id] = reminder.model_copy(update={"sent_at": at})

    async def ping(self) -> bool:
        return True
