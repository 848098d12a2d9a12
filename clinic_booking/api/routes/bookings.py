# clinic_booking/api/routes/bookings.py

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import Response

from clinic_booking.api.deps import get_booking_service
from clinic_booking.services.booking import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", status_code=201)
async def create_booking(
    payload: dict[str, Any] = Body(...),
    service: BookingService = Depends(get_booking_service),
):
    """Booking wizard submission."""
    appt = await service.create(payload)
    return {
        "success": True,
        "appointment": appt.summary(include_patient=False),
        "cancel_token": appt.cancel_token,
    }


@router.get("/calendar.ics")
async def calendar_invite(token: str = "", service: BookingService = Depends(get_booking_service)):
    ics = await service.calendar_invite(token)
    return Response(
        content=ics,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="appointment.ics"'},
    )
