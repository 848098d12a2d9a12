# clinic_booking/api/routes/catalog.py
"""Reference data for the booking wizard: bookable providers and treatments."""
from typing import Optional

from fastapi import APIRouter, Depends

from clinic_booking.api.deps import get_availability_service
from clinic_booking.services.availability import AvailabilityService

router = APIRouter(tags=["catalog"])


@router.get("/providers")
async def list_providers(service: AvailabilityService = Depends(get_availability_service)):
    providers = await service.providers()
    return {"providers": [p.model_dump(mode="json") for p in providers]}


@router.get("/treatments")
async def list_treatments(
    booking_kind: Optional[str] = None,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Active treatments; ``booking_kind`` is ``provider`` or ``practice_service``."""
    treatments = await service.treatments(booking_kind)
    return {"treatments": [t.model_dump(mode="json") for t in treatments]}
