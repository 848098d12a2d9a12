# clinic_booking/services/absence.py
"""
Provider absences and the cancellation cascade they trigger.

The cascade is idempotent: each appointment is moved to ``cancelled`` with
a conditional transition, and only appointments this run actually moved
get a ``cancelled_by_practice`` notification. Re-running ``apply`` after a
partial failure finishes the job without double-notifying.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from clinic_booking.core.errors import NotFound
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.store import BookingStore
from clinic_booking.schemas.booking import (
    ACTIVE_STATUSES,
    AbsenceCreate,
    AbsenceView,
    AppointmentStatus,
    EventKind,
    parse_model,
)
from clinic_booking.services.notifications import NotificationDispatcher

logger = get_logger(__name__)


class AbsenceOutcome(BaseModel):
    absence: AbsenceView
    cancelled_appointment_ids: list[int]


class AbsenceService:

    def __init__(self, store: BookingStore, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def create(self, data: AbsenceCreate | dict[str, Any]) -> AbsenceOutcome:
        data = parse_model(AbsenceCreate, data)
        if await self.store.get_provider(data.provider_id) is None:
            raise NotFound(error_key="provider.notFound", details={"provider_id": data.provider_id})

        absence = await self.store.create_absence(data)
        logger.info(
            "absence_created",
            absence_id=absence.id,
            provider_id=absence.provider_id,
            start_date=str(absence.start_date),
            end_date=str(absence.end_date),
            reason=absence.reason,
        )
        cancelled = await self.apply(absence.id)
        return AbsenceOutcome(absence=absence, cancelled_appointment_ids=cancelled)

    async def apply(self, absence_id: int) -> list[int]:
        """Cancel every active appointment the absence covers. Returns the ids moved by this run."""
        absence = await self.store.get_absence(absence_id)
        if absence is None:
            raise NotFound(error_key="absence.notFound", details={"absence_id": absence_id})

        affected = await self.store.list_appointments(
            absence.start_date, absence.end_date,
            provider_id=absence.provider_id,
            statuses=ACTIVE_STATUSES,
        )

        cancelled: list[int] = []
        for appt in affected:
            updated = await self.store.transition_status(appt.id, ACTIVE_STATUSES, AppointmentStatus.CANCELLED)
            if updated is None:
                # Cancelled concurrently or by an earlier run
                continue
            cancelled.append(updated.id)
            await self.dispatcher.notify(EventKind.CANCELLED_BY_PRACTICE, updated)

        logger.info(
            "absence_cascade_complete",
            absence_id=absence_id,
            provider_id=absence.provider_id,
            candidates=len(affected),
            cancelled=len(cancelled),
        )
        return cancelled

    async def delete(self, absence_id: int) -> None:
        # Appointments cancelled by the absence stay cancelled
        if not await self.store.delete_absence(absence_id):
            raise NotFound(error_key="absence.notFound", details={"absence_id": absence_id})
        logger.info("absence_deleted", absence_id=absence_id)

    async def list(self, provider_id: Optional[int] = None) -> list[AbsenceView]:
        return await self.store.list_absences(provider_id=provider_id)
