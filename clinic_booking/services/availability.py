# clinic_booking/services/availability.py
"""
Slot availability and multi-slot grouping.

A treatment needs ``ceil(duration / unit)`` base units. A start slot is
offered only when it and the following units are strictly contiguous
(each exactly one unit after the previous, same owner, same day), all
usable, and inside the practice's opening window.
"""
from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, datetime
from typing import Callable, Iterable, Optional, Sequence

from clinic_booking.core.business import PracticeCalendar, UTC, add_minutes, default_calendar
from clinic_booking.core.config import settings
from clinic_booking.core.errors import NotFound, SlotConflict, ValidationError
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.store import BookingStore
from clinic_booking.schemas.booking import (
    PRACTICE_SERVICE_LABEL,
    AbsenceView,
    BookingKind,
    ProviderView,
    SlotOption,
    TimeSlotView,
    TreatmentView,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def required_units(duration_minutes: int, unit_minutes: int) -> int:
    if duration_minutes <= 0 or unit_minutes <= 0:
        raise ValidationError(error_key="validation.treatment.duration")
    return math.ceil(duration_minutes / unit_minutes)


def contiguous_run(
    start: TimeSlotView,
    day_slots: Iterable[TimeSlotView],
    units: int,
    unit_minutes: int,
    calendar: Optional[PracticeCalendar] = None,
    usable: Optional[Callable[[TimeSlotView], bool]] = None,
) -> Optional[list[TimeSlotView]]:
    """The ``units`` slots beginning at ``start``, or None if the run is broken anywhere."""
    calendar = calendar or default_calendar
    usable = usable or (lambda s: s.is_available)
    by_start = {
        s.start_time: s for s in day_slots
        if s.provider_id == start.provider_id and s.date == start.date
    }

    run: list[TimeSlotView] = []
    cur: Optional[TimeSlotView] = start
    for _ in range(units):
        if cur is None:
            return None
        if cur.end_time != add_minutes(cur.start_time, unit_minutes):
            return None
        if not usable(cur) or not calendar.is_open(cur.date, cur.start_time, cur.end_time):
            return None
        run.append(cur)
        cur = by_start.get(cur.end_time)
    return run


class AvailabilityService:

    def __init__(self, store: BookingStore, calendar: Optional[PracticeCalendar] = None,
                 clock: Clock = utc_now, unit_minutes: Optional[int] = None):
        self.store = store
        self.calendar = calendar or default_calendar
        self.clock = clock
        self.unit_minutes = unit_minutes or settings.SLOT_UNIT_MINUTES

    # ---------- lookups ----------

    async def providers(self) -> list[ProviderView]:
        return await self.store.list_providers()

    async def treatments(self, booking_kind: Optional[str] = None) -> list[TreatmentView]:
        return await self.store.list_treatments(booking_kind=booking_kind)

    async def treatment_for(self, treatment_id: int, kind: BookingKind) -> TreatmentView:
        treatment = await self.store.get_treatment(treatment_id)
        if treatment is None or not treatment.is_active:
            raise NotFound(error_key="treatment.notFound")
        expects_practice = treatment.booking_kind == PRACTICE_SERVICE_LABEL
        if expects_practice != kind.is_practice_service:
            raise ValidationError(
                error_key="validation.treatment.kindMismatch",
                details={"treatment_id": treatment_id, "booking_kind": kind.label},
            )
        return treatment

    async def provider_for(self, kind: BookingKind) -> Optional[ProviderView]:
        if kind.is_practice_service:
            return None
        provider = await self.store.get_provider(kind.provider_id)
        if provider is None:
            raise NotFound(error_key="provider.notFound")
        return provider

    async def _absences(self, kind: BookingKind, start: date, end: date) -> list[AbsenceView]:
        if kind.is_practice_service:
            return []
        return await self.store.list_absences(provider_id=kind.provider_id, start=start, end=end)

    async def _units(self, kind: BookingKind, treatment_id: Optional[int]) -> int:
        if treatment_id is None:
            return 1
        treatment = await self.treatment_for(treatment_id, kind)
        return required_units(treatment.duration_minutes, self.unit_minutes)

    # ---------- filtering ----------

    def _day_open(self, day: date, provider: Optional[ProviderView], absences: Sequence[AbsenceView]) -> bool:
        if self.calendar.window(day) is None:
            return False
        if provider is not None and not provider.bookable_on(day):
            return False
        return not any(a.covers(day) for a in absences)

    @staticmethod
    def eligible(slot: TimeSlotView, private_insurance: Optional[bool]) -> bool:
        """Statutory patients never see private-only slots; None skips the check."""
        return not (private_insurance is False and slot.private_only)

    def _options(self, day_slots: Sequence[TimeSlotView], units: int,
                 private_insurance: Optional[bool]) -> list[SlotOption]:
        usable = lambda s: s.is_available and self.eligible(s, private_insurance)
        options = []
        for slot in sorted(day_slots, key=lambda s: s.start_time):
            run = contiguous_run(slot, day_slots, units, self.unit_minutes, self.calendar, usable)
            if run is None:
                continue
            options.append(SlotOption(
                provider_id=slot.provider_id,
                date=slot.date,
                start_time=run[0].start_time,
                end_time=run[-1].end_time,
                slot_ids=[s.id for s in run],
            ))
        return options

    # ---------- queries ----------

    async def available_dates(self, start: date, end: date, kind: Optional[BookingKind] = None,
                              treatment_id: Optional[int] = None,
                              private_insurance: Optional[bool] = None) -> list[date]:
        if start > end:
            raise ValidationError(error_key="validation.dateRange.invalid")
        kind = kind or BookingKind.practice_service()
        units = await self._units(kind, treatment_id)
        provider = await self.provider_for(kind)
        if provider is not None and not provider.is_active:
            return []
        absences = await self._absences(kind, start, end)

        slots = await self.store.list_slots(start, end, provider_id=kind.provider_id, available_only=True)
        by_day: dict[date, list[TimeSlotView]] = defaultdict(list)
        for s in slots:
            by_day[s.date].append(s)

        dates = [
            day for day, day_slots in sorted(by_day.items())
            if self._day_open(day, provider, absences) and self._options(day_slots, units, private_insurance)
        ]
        logger.debug("available_dates", booking_kind=kind.label, start=str(start), end=str(end), found=len(dates))
        return dates

    async def available_starts(self, day: date, kind: Optional[BookingKind] = None,
                               treatment_id: Optional[int] = None,
                               private_insurance: Optional[bool] = None) -> list[SlotOption]:
        kind = kind or BookingKind.practice_service()
        units = await self._units(kind, treatment_id)
        provider = await self.provider_for(kind)
        if provider is not None and not provider.is_active:
            return []
        absences = await self._absences(kind, day, day)
        if not self._day_open(day, provider, absences):
            return []

        slots = await self.store.list_slots(day, day, provider_id=kind.provider_id, available_only=True)
        return self._options(slots, units, private_insurance)

    async def reservable_run(self, start_slot_id: int, units: int, kind: BookingKind, *,
                             private_insurance: Optional[bool] = None,
                             held: Iterable[int] = ()) -> list[TimeSlotView]:
        """
        Resolve the slot run a booking or reschedule would reserve.

        Slots in ``held`` count as usable (an appointment moving within its
        own slots). Raises SlotConflict when the run is broken; the store
        re-checks availability atomically at commit time.
        """
        start = await self.store.get_slot(start_slot_id)
        if start is None:
            raise NotFound(error_key="slot.notFound")
        if not kind.owns(start):
            raise ValidationError(
                error_key="validation.slot.kindMismatch",
                details={"slot_id": start_slot_id, "booking_kind": kind.label},
            )
        if not self.eligible(start, private_insurance):
            raise ValidationError(error_key="validation.slot.privateOnly", details={"slot_id": start_slot_id})

        provider = await self.provider_for(kind)
        absences = await self._absences(kind, start.date, start.date)
        if not self._day_open(start.date, provider, absences):
            raise SlotConflict(error_key="booking.slotUnavailable", details={"slot_ids": [start_slot_id]})

        held_ids = set(held)
        day_slots = await self.store.list_slots(start.date, start.date, provider_id=kind.provider_id)
        usable = lambda s: (s.is_available or s.id in held_ids) and self.eligible(s, private_insurance)
        run = contiguous_run(start, day_slots, units, self.unit_minutes, self.calendar, usable)
        if run is None:
            logger.info("slot_run_unavailable", start_slot_id=start_slot_id, units=units, booking_kind=kind.label)
            raise SlotConflict(details={"slot_ids": [start_slot_id]})
        return run
