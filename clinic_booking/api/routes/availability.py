# clinic_booking/api/routes/availability.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from clinic_booking.api.deps import get_availability_service
from clinic_booking.schemas.booking import BookingKind
from clinic_booking.services.availability import AvailabilityService

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/dates")
async def available_dates(
    start: date,
    end: date,
    provider_id: Optional[int] = None,
    treatment_id: Optional[int] = None,
    private_insurance: Optional[bool] = None,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Dates in [start, end] with at least one bookable start. No provider_id = practice service."""
    dates = await service.available_dates(
        start, end, BookingKind(provider_id),
        treatment_id=treatment_id, private_insurance=private_insurance,
    )
    return {"dates": [d.isoformat() for d in dates]}


@router.get("/slots")
async def available_slots(
    day: date,
    provider_id: Optional[int] = None,
    treatment_id: Optional[int] = None,
    private_insurance: Optional[bool] = None,
    service: AvailabilityService = Depends(get_availability_service),
):
    options = await service.available_starts(
        day, BookingKind(provider_id),
        treatment_id=treatment_id, private_insurance=private_insurance,
    )
    return {
        "date": day.isoformat(),
        "slots": [
            {
                "start_slot_id": o.start_slot_id,
                "slot_ids": o.slot_ids,
                "provider_id": o.provider_id,
                "start_time": o.start_time.isoformat(timespec="minutes"),
                "end_time": o.end_time.isoformat(timespec="minutes"),
            }
            for o in options
        ],
    }
