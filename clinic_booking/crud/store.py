# clinic_booking/crud/store.py
"""
The booking store interface.

Both implementations (SQL and in-memory) honour the same atomicity contract:

* ``create_appointment`` reserves every slot id and inserts patient and
  appointment in one unit; if any slot is already taken nothing changes and
  ``SlotConflict`` is raised.
* ``transition_status`` only applies when the current status is one of
  ``expected``; moving into ``cancelled`` releases the held slots in the
  same unit. Returns ``None`` when the condition did not hold.
* ``swap_slots`` reserves the new units before releasing the old ones, in
  one unit; on conflict the appointment keeps its old slots.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional, Protocol, Sequence

from clinic_booking.schemas.booking import (
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


class BookingStore(Protocol):
    # --- reference data ---
    async def get_treatment(self, treatment_id: int) -> Optional[TreatmentView]: ...

    async def list_treatments(
        self, *, booking_kind: Optional[str] = None, active_only: bool = True
    ) -> list[TreatmentView]: ...

    async def get_provider(self, provider_id: int) -> Optional[ProviderView]: ...

    async def list_providers(self, *, active_only: bool = True) -> list[ProviderView]: ...

    # --- weekly schedules ---
    async def create_schedule_entry(self, data: ScheduleEntryCreate) -> ScheduleEntryView: ...

    async def list_schedule_entries(self, *, provider_id: Optional[int] = None) -> list[ScheduleEntryView]: ...

    async def delete_schedule_entry(self, entry_id: int) -> bool: ...

    # --- slots ---
    async def get_slot(self, slot_id: int) -> Optional[TimeSlotView]: ...

    async def list_slots(
        self,
        start: date,
        end: date,
        *,
        provider_id: Optional[int] = None,
        any_provider: bool = False,
        available_only: bool = False,
    ) -> list[TimeSlotView]:
        """Slots in [start, end] ordered by (provider, date, start_time).

        ``any_provider`` ignores ``provider_id`` and returns every slot,
        otherwise only slots whose provider equals ``provider_id``
        (``None`` = practice-service slots).
        """
        ...

    async def generate_slots(self, start: date, end: date, unit_minutes: int) -> int:
        """Bulk-create missing slots for every active provider and the practice service.

        A provider with weekly schedule entries gets only the units those
        entries cover, tagged with their insurance filter; providers without
        entries and the practice service get the whole opening window.
        """
        ...

    # --- appointments ---
    async def create_appointment(self, draft: NewAppointment, slot_ids: Sequence[int]) -> AppointmentView: ...

    async def get_appointment(self, appointment_id: int) -> Optional[AppointmentView]: ...

    async def find_by_cancel_token(self, token: str) -> Optional[AppointmentView]: ...

    async def list_appointments(
        self,
        start: date,
        end: date,
        *,
        provider_id: Optional[int] = None,
        statuses: Optional[Iterable[AppointmentStatus]] = None,
    ) -> list[AppointmentView]: ...

    async def transition_status(
        self,
        appointment_id: int,
        expected: Iterable[AppointmentStatus],
        new_status: AppointmentStatus,
    ) -> Optional[AppointmentView]: ...

    async def swap_slots(
        self,
        appointment_id: int,
        new_slot_ids: Sequence[int],
        *,
        expected: Iterable[AppointmentStatus],
        cancellation_deadline: datetime,
    ) -> AppointmentView: ...

    # --- patients ---
    async def get_patient(self, patient_id: int) -> Optional[PatientView]: ...

    async def patient_statuses(self, patient_id: int) -> list[AppointmentStatus]: ...

    async def anonymize_patient(self, patient_id: int, at: datetime) -> Optional[PatientView]: ...

    # --- absences ---
    async def create_absence(self, data: AbsenceCreate) -> AbsenceView: ...

    async def get_absence(self, absence_id: int) -> Optional[AbsenceView]: ...

    async def list_absences(
        self,
        *,
        provider_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[AbsenceView]: ...

    async def delete_absence(self, absence_id: int) -> bool: ...

    # --- reminders ---
    async def replace_reminders(
        self, appointment_id: int, schedule: Sequence[tuple[ReminderType, datetime]]
    ) -> list[ReminderView]:
        """Drop unsent reminders of the appointment and insert ``schedule``."""
        ...

    async def due_reminders(self, now: datetime, limit: int = 50) -> list[ReminderView]: ...

    async def mark_reminder_sent(self, reminder_id: int, at: datetime) -> None: ...

    async def ping(self) -> bool: ...
