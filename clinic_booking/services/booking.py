# clinic_booking/services/booking.py
"""
Booking lifecycle: create, status changes, reschedule, self-service
cancellation by token and patient anonymization.

Transitions:
    pending   -> confirmed | cancelled | completed
    confirmed -> pending | cancelled | completed
    cancelled, completed: terminal

Moving into ``cancelled`` releases the held slots in the same store call.
Notification failures are logged by the dispatcher and never roll back the
transition that caused them.
"""
from __future__ import annotations

import secrets
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from clinic_booking.core.business import LOCAL_TZ, UTC, PracticeCalendar, generation_window
from clinic_booking.core.config import settings
from clinic_booking.core.errors import (
    AlreadyCancelled,
    BookingError,
    DeadlineExceeded,
    ErrorSeverity,
    InvalidToken,
    InvalidTransition,
    NotFound,
    PastAppointment,
    SlotConflict,
    ValidationError,
    log_error,
)
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.store import BookingStore
from clinic_booking.schemas.booking import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    AppointmentStatus,
    AppointmentView,
    BookingRequest,
    EventKind,
    NewAppointment,
    PatientView,
    parse_model,
)
from clinic_booking.services.availability import AvailabilityService, Clock, required_units, utc_now
from clinic_booking.services.calendar_invite import render_ics
from clinic_booking.services.notifications import NotificationDispatcher
from clinic_booking.services.reminders import ReminderService

logger = get_logger(__name__)

MIN_WEEKS_AHEAD = 1
MAX_WEEKS_AHEAD = 52


def mint_cancel_token() -> str:
    return secrets.token_urlsafe(32)


class CancellationPreview(BaseModel):
    """What the cancellation page shows before the patient confirms."""

    appointment: AppointmentView
    cancellable: bool
    reason: Optional[str] = None


class BookingService:

    def __init__(
        self,
        store: BookingStore,
        dispatcher: NotificationDispatcher,
        *,
        calendar: Optional[PracticeCalendar] = None,
        clock: Clock = utc_now,
        unit_minutes: Optional[int] = None,
        deadline_hours: Optional[int] = None,
        initial_status: Optional[AppointmentStatus] = None,
        reminders: Optional[ReminderService] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.availability = AvailabilityService(store, calendar, clock, unit_minutes)
        self.unit_minutes = self.availability.unit_minutes
        self.deadline_hours = settings.CANCELLATION_DEADLINE_HOURS if deadline_hours is None else deadline_hours
        self.initial_status = AppointmentStatus(initial_status or settings.DEFAULT_BOOKING_STATUS)
        self.reminders = reminders or ReminderService(store, dispatcher, clock)

    # ---------- helpers ----------

    def deadline_for(self, starts_at: datetime) -> datetime:
        return (starts_at - timedelta(hours=self.deadline_hours)).astimezone(UTC)

    async def _require(self, appointment_id: int) -> AppointmentView:
        appt = await self.store.get_appointment(appointment_id)
        if appt is None:
            raise NotFound(error_key="appointment.notFound", details={"appointment_id": appointment_id})
        return appt

    async def _schedule_reminders(self, appt: AppointmentView) -> None:
        # Runs after commit: a failure here must not fail the booking
        try:
            await self.reminders.schedule(appt)
        except Exception as e:
            log_error(e, {"component": "reminders", "appointment_id": appt.id}, ErrorSeverity.MEDIUM)

    async def _transition_failed(self, appointment_id: int) -> BookingError:
        current = await self.store.get_appointment(appointment_id)
        if current is None:
            return NotFound(error_key="appointment.notFound")
        if current.status == AppointmentStatus.CANCELLED:
            return AlreadyCancelled()
        return InvalidTransition(details={"status": current.status.value})

    # ---------- create ----------

    async def create(self, request: BookingRequest | dict[str, Any]) -> AppointmentView:
        req = parse_model(BookingRequest, request)
        kind = req.kind

        treatment = await self.availability.treatment_for(req.treatment_type_id, kind)
        units = required_units(treatment.duration_minutes, self.unit_minutes)
        run = await self.availability.reservable_run(
            req.start_slot_id, units, kind, private_insurance=req.patient.private_insurance,
        )

        starts_at = run[0].starts_at()
        if starts_at <= self.clock():
            raise ValidationError(error_key="validation.slot.inPast", details={"slot_id": req.start_slot_id})

        draft = NewAppointment(
            patient=req.patient,
            treatment_type_id=treatment.id,
            provider_id=kind.provider_id,
            status=self.initial_status,
            notes=req.notes,
            language=req.language,
            cancel_token=mint_cancel_token(),
            cancellation_deadline=self.deadline_for(starts_at),
            consent_given=req.consent_given,
        )
        slot_ids = [s.id for s in run]
        try:
            appt = await self.store.create_appointment(draft, slot_ids)
        except SlotConflict:
            logger.warning("slot_conflict", operation="create", slot_ids=slot_ids, booking_kind=kind.label)
            raise

        logger.info(
            "booking_created",
            appointment_id=appt.id,
            booking_kind=kind.label,
            treatment_id=treatment.id,
            units=units,
            status=appt.status.value,
        )
        await self._schedule_reminders(appt)
        await self.dispatcher.notify(EventKind.CREATED, appt)
        return appt

    # ---------- status ----------

    async def set_status(self, appointment_id: int, new_status: AppointmentStatus | str) -> AppointmentView:
        try:
            new_status = AppointmentStatus(new_status)
        except ValueError:
            raise ValidationError(error_key="validation.status.invalid", details={"status": str(new_status)})

        appt = await self._require(appointment_id)
        if appt.status == new_status:
            return appt
        if appt.status in TERMINAL_STATUSES:
            raise InvalidTransition(details={"from": appt.status.value, "to": new_status.value})

        updated = await self.store.transition_status(appointment_id, ACTIVE_STATUSES, new_status)
        if updated is None:
            raise await self._transition_failed(appointment_id)

        logger.info("appointment_status_changed", appointment_id=appointment_id,
                    old_status=appt.status.value, new_status=new_status.value)
        if new_status == AppointmentStatus.CANCELLED:
            await self.dispatcher.notify(EventKind.CANCELLED_BY_PRACTICE, updated)
        return updated

    # ---------- reschedule ----------

    async def reschedule(self, appointment_id: int, new_start_slot_id: int) -> AppointmentView:
        appt = await self._require(appointment_id)
        if appt.status == AppointmentStatus.CANCELLED:
            raise AlreadyCancelled(error_key="appointment.alreadyCancelled")
        if not appt.is_active:
            raise InvalidTransition(details={"status": appt.status.value})

        units = required_units(appt.treatment.duration_minutes, self.unit_minutes)
        run = await self.availability.reservable_run(
            new_start_slot_id, units, appt.kind,
            private_insurance=appt.patient.private_insurance,
            held=appt.slot_ids,
        )
        new_ids = [s.id for s in run]
        if new_ids == appt.slot_ids:
            return appt

        starts_at = run[0].starts_at()
        if starts_at <= self.clock():
            raise ValidationError(error_key="validation.slot.inPast", details={"slot_id": new_start_slot_id})

        try:
            updated = await self.store.swap_slots(
                appointment_id, new_ids,
                expected=ACTIVE_STATUSES,
                cancellation_deadline=self.deadline_for(starts_at),
            )
        except SlotConflict:
            logger.warning("slot_conflict", operation="reschedule", appointment_id=appointment_id, slot_ids=new_ids)
            raise

        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            old_date=str(appt.date), old_start=str(appt.start_time),
            new_date=str(updated.date), new_start=str(updated.start_time),
        )
        await self._schedule_reminders(updated)
        await self.dispatcher.notify(
            EventKind.RESCHEDULED, updated,
            previous_date=appt.date, previous_start_time=appt.start_time,
        )
        return updated

    # ---------- self-service cancellation ----------

    def _check_cancellable(self, appt: AppointmentView, now: datetime) -> None:
        if appt.status == AppointmentStatus.CANCELLED:
            raise AlreadyCancelled()
        if appt.status == AppointmentStatus.COMPLETED:
            raise InvalidTransition(details={"status": appt.status.value})
        if now >= appt.starts_at():
            raise PastAppointment()
        if now >= appt.cancellation_deadline:
            raise DeadlineExceeded(details={"deadline": appt.cancellation_deadline.isoformat()})

    async def _by_token(self, token: str) -> AppointmentView:
        token = (token or "").strip()
        if not token:
            raise InvalidToken()
        appt = await self.store.find_by_cancel_token(token)
        if appt is None:
            raise InvalidToken()
        return appt

    async def preview_by_token(self, token: str, now: Optional[datetime] = None) -> CancellationPreview:
        appt = await self._by_token(token)
        try:
            self._check_cancellable(appt, now or self.clock())
        except BookingError as e:
            return CancellationPreview(appointment=appt, cancellable=False, reason=e.error_key)
        return CancellationPreview(appointment=appt, cancellable=True)

    async def cancel_by_token(self, token: str, now: Optional[datetime] = None) -> AppointmentView:
        appt = await self._by_token(token)
        self._check_cancellable(appt, now or self.clock())

        updated = await self.store.transition_status(appt.id, ACTIVE_STATUSES, AppointmentStatus.CANCELLED)
        if updated is None:
            raise await self._transition_failed(appt.id)

        logger.info("appointment_cancelled_by_patient", appointment_id=appt.id, booking_kind=appt.kind.label)
        await self.dispatcher.notify(EventKind.CANCELLED_BY_PATIENT, updated)
        return updated

    async def calendar_invite(self, token: str) -> str:
        """ICS download for the confirmation page; the cancellation token identifies the booking."""
        return render_ics(await self._by_token(token), self.clock())

    # ---------- privacy ----------

    async def anonymize_patient(self, patient_id: int) -> PatientView:
        patient = await self.store.get_patient(patient_id)
        if patient is None:
            raise NotFound(error_key="patient.notFound", details={"patient_id": patient_id})

        statuses = await self.store.patient_statuses(patient_id)
        open_ = [s.value for s in statuses if s not in TERMINAL_STATUSES]
        if open_:
            raise InvalidTransition(error_key="patient.activeAppointments", details={"statuses": open_})
        if patient.anonymized_at is not None:
            return patient

        scrubbed = await self.store.anonymize_patient(patient_id, self.clock())
        if scrubbed is None:
            raise NotFound(error_key="patient.notFound", details={"patient_id": patient_id})
        logger.info("patient_anonymized", patient_id=patient_id)
        return scrubbed

    # ---------- admin reads / slot generation ----------

    async def get(self, appointment_id: int) -> AppointmentView:
        return await self._require(appointment_id)

    async def list_appointments(self, start: date, end: date, provider_id: Optional[int] = None,
                                statuses: Optional[Iterable[AppointmentStatus]] = None) -> list[AppointmentView]:
        if start > end:
            raise ValidationError(error_key="validation.dateRange.invalid")
        return await self.store.list_appointments(start, end, provider_id=provider_id, statuses=statuses)

    async def generate_slots(self, weeks_ahead: int = 4) -> dict[str, Any]:
        if not MIN_WEEKS_AHEAD <= weeks_ahead <= MAX_WEEKS_AHEAD:
            raise ValidationError(error_key="validation.weeksAhead.range", details={"weeks_ahead": weeks_ahead})
        today = self.clock().astimezone(LOCAL_TZ).date()
        start, end = generation_window(today, weeks_ahead)
        created = await self.store.generate_slots(start, end, self.unit_minutes)
        logger.info("slots_generated", created=created, start=str(start), end=str(end))
        return {"created": created, "start": start, "end": end}
