# clinic_booking/services/schedule.py
"""
Weekly consultation hours per provider.

Entries only shape future slot generation; slots that already exist keep
their insurance filter until they are regenerated.
"""
from __future__ import annotations

from typing import Any, Optional

from clinic_booking.core.business import LOCAL_TZ
from clinic_booking.core.errors import NotFound, ValidationError
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.store import BookingStore
from clinic_booking.schemas.booking import ScheduleEntryCreate, ScheduleEntryView, parse_model
from clinic_booking.services.availability import Clock, utc_now

logger = get_logger(__name__)


class ScheduleService:

    def __init__(self, store: BookingStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def create(self, provider_id: int, data: ScheduleEntryCreate | dict[str, Any]) -> ScheduleEntryView:
        data = parse_model(ScheduleEntryCreate, data)
        if await self.store.get_provider(provider_id) is None:
            raise NotFound(error_key="provider.notFound", details={"provider_id": provider_id})

        valid_from = data.valid_from or self.clock().astimezone(LOCAL_TZ).date()
        if data.valid_until is not None and data.valid_until < valid_from:
            raise ValidationError(error_key="validation.dateRange.invalid")

        entry = await self.store.create_schedule_entry(
            data.model_copy(update={"provider_id": provider_id, "valid_from": valid_from})
        )
        logger.info(
            "schedule_entry_created",
            entry_id=entry.id,
            provider_id=provider_id,
            weekday=entry.weekday,
            is_bookable=entry.is_bookable,
            insurance_filter=entry.insurance_filter,
        )
        return entry

    async def list(self, provider_id: Optional[int] = None) -> list[ScheduleEntryView]:
        return await self.store.list_schedule_entries(provider_id=provider_id)

    async def delete(self, entry_id: int) -> None:
        if not await self.store.delete_schedule_entry(entry_id):
            raise NotFound(error_key="schedule.notFound", details={"entry_id": entry_id})
        logger.info("schedule_entry_deleted", entry_id=entry_id)
