# clinic_booking/services/reminders.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from clinic_booking.core.business import UTC
from clinic_booking.core.config import settings
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.store import BookingStore
from clinic_booking.schemas.booking import AppointmentView, EventKind, ReminderType, ReminderView
from clinic_booking.services.availability import Clock, utc_now
from clinic_booking.services.notifications import NotificationDispatcher

logger = get_logger(__name__)


@dataclass
class ReminderRun:
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def reminder_schedule(appt: AppointmentView, now: datetime,
                      offsets_hours: Sequence[int]) -> list[tuple[ReminderType, datetime]]:
    """Reminder times for an appointment; offsets already in the past are dropped."""
    start = appt.starts_at()
    schedule = []
    for hours in offsets_hours:
        try:
            reminder_type = ReminderType.for_offset(hours)
        except ValueError:
            logger.warning("reminder_offset_unsupported", offset_hours=hours)
            continue
        when = start - timedelta(hours=hours)
        if when > now:
            schedule.append((reminder_type, when.astimezone(UTC)))
    return schedule


class ReminderService:

    def __init__(self, store: BookingStore, dispatcher: NotificationDispatcher,
                 clock: Clock = utc_now, offsets_hours: Optional[Sequence[int]] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.offsets_hours = list(offsets_hours) if offsets_hours is not None else settings.reminder_offsets

    async def schedule(self, appt: AppointmentView) -> list[ReminderView]:
        """Replace any unsent reminders of ``appt`` with a fresh schedule."""
        schedule = reminder_schedule(appt, self.clock(), self.offsets_hours)
        return await self.store.replace_reminders(appt.id, schedule)

    async def process_due(self, now: Optional[datetime] = None, limit: int = 50) -> ReminderRun:
        now = now or self.clock()
        run = ReminderRun()

        for reminder in await self.store.due_reminders(now, limit):
            run.processed += 1
            appt = await self.store.get_appointment(reminder.appointment_id)

            if appt is None or not appt.is_active or appt.starts_at() <= now:
                # Nothing to remind about; close it out so it is not picked up again
                await self.store.mark_reminder_sent(reminder.id, now)
                run.skipped += 1
                continue

            delivered = await self.dispatcher.notify(
                EventKind.REMINDER_DUE, appt, reminder_type=reminder.reminder_type,
            )
            if delivered:
                await self.store.mark_reminder_sent(reminder.id, now)
                run.sent += 1
            else:
                run.failed += 1

        if run.processed:
            logger.info("reminders_processed", **run.as_dict())
        return run
