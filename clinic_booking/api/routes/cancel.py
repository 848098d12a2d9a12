# clinic_booking/api/routes/cancel.py
"""Self-service cancellation. The token from the confirmation link is the only credential."""
from typing import Any

from fastapi import APIRouter, Body, Depends

from clinic_booking.api.deps import get_booking_service
from clinic_booking.schemas.booking import CancelRequest, parse_model
from clinic_booking.services.booking import BookingService

router = APIRouter(prefix="/cancel", tags=["cancel"])


@router.get("")
async def preview_cancellation(token: str = "", service: BookingService = Depends(get_booking_service)):
    preview = await service.preview_by_token(token)
    return {
        "success": True,
        "cancellable": preview.cancellable,
        "reason": preview.reason,
        "appointment": preview.appointment.summary(include_patient=False),
    }


@router.post("")
async def cancel_appointment(
    payload: dict[str, Any] = Body(...),
    service: BookingService = Depends(get_booking_service),
):
    req = parse_model(CancelRequest, payload)
    appt = await service.cancel_by_token(req.cancel_token)
    return {"success": True, "appointment": appt.summary(include_patient=False)}
