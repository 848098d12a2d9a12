# clinic_booking/api/routes/admin.py
"""Practice-staff operations. Every route requires the X-API-Key header."""
from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from clinic_booking.api.deps import (
    get_absence_service,
    get_booking_service,
    get_reminder_service,
    get_schedule_service,
    require_admin_key,
)
from clinic_booking.core.errors import ValidationError
from clinic_booking.schemas.booking import (
    AppointmentStatus,
    GenerateSlotsRequest,
    RescheduleRequest,
    StatusUpdate,
    parse_model,
)
from clinic_booking.services.absence import AbsenceService
from clinic_booking.services.booking import BookingService
from clinic_booking.services.reminders import ReminderService
from clinic_booking.services.schedule import ScheduleService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])


# -------- Appointments --------

@router.get("/appointments")
async def list_appointments(
    start: date,
    end: date,
    provider_id: Optional[int] = None,
    status: Optional[List[str]] = Query(default=None),
    service: BookingService = Depends(get_booking_service),
):
    statuses = None
    if status:
        try:
            statuses = [AppointmentStatus(s) for s in status]
        except ValueError:
            raise ValidationError(error_key="validation.status.invalid", details={"status": status})
    appts = await service.list_appointments(start, end, provider_id=provider_id, statuses=statuses)
    return {"appointments": [a.summary() for a in appts]}


@router.get("/appointments/{appointment_id}")
async def get_appointment(appointment_id: int, service: BookingService = Depends(get_booking_service)):
    appt = await service.get(appointment_id)
    return {"appointment": appt.summary()}


@router.patch("/appointments/{appointment_id}/status")
async def update_status(
    appointment_id: int,
    payload: dict[str, Any] = Body(...),
    service: BookingService = Depends(get_booking_service),
):
    req = parse_model(StatusUpdate, payload)
    appt = await service.set_status(appointment_id, req.status)
    return {"success": True, "appointment": appt.summary()}


@router.post("/appointments/{appointment_id}/reschedule")
async def reschedule(
    appointment_id: int,
    payload: dict[str, Any] = Body(...),
    service: BookingService = Depends(get_booking_service),
):
    req = parse_model(RescheduleRequest, payload)
    appt = await service.reschedule(appointment_id, req.new_start_slot_id)
    return {"success": True, "appointment": appt.summary()}


# -------- Patients --------

@router.post("/patients/{patient_id}/anonymize")
async def anonymize_patient(patient_id: int, service: BookingService = Depends(get_booking_service)):
    patient = await service.anonymize_patient(patient_id)
    return {"success": True, "patient": patient.model_dump(mode="json")}


# -------- Absences --------

@router.post("/absences", status_code=201)
async def create_absence(
    payload: dict[str, Any] = Body(...),
    service: AbsenceService = Depends(get_absence_service),
):
    outcome = await service.create(payload)
    return {"success": True, **outcome.model_dump(mode="json")}


@router.get("/absences")
async def list_absences(provider_id: Optional[int] = None, service: AbsenceService = Depends(get_absence_service)):
    absences = await service.list(provider_id)
    return {"absences": [a.model_dump(mode="json") for a in absences]}


@router.post("/absences/{absence_id}/apply")
async def apply_absence(absence_id: int, service: AbsenceService = Depends(get_absence_service)):
    cancelled = await service.apply(absence_id)
    return {"success": True, "cancelled_appointment_ids": cancelled}


@router.delete("/absences/{absence_id}")
async def delete_absence(absence_id: int, service: AbsenceService = Depends(get_absence_service)):
    await service.delete(absence_id)
    return {"success": True}


# -------- Weekly schedules --------

@router.post("/providers/{provider_id}/schedule", status_code=201)
async def create_schedule_entry(
    provider_id: int,
    payload: dict[str, Any] = Body(...),
    service: ScheduleService = Depends(get_schedule_service),
):
    entry = await service.create(provider_id, payload)
    return {"success": True, "entry": entry.model_dump(mode="json")}


@router.get("/providers/{provider_id}/schedule")
async def list_schedule(provider_id: int, service: ScheduleService = Depends(get_schedule_service)):
    entries = await service.list(provider_id)
    return {"entries": [e.model_dump(mode="json") for e in entries]}


@router.delete("/schedule/{entry_id}")
async def delete_schedule_entry(entry_id: int, service: ScheduleService = Depends(get_schedule_service)):
    await service.delete(entry_id)
    return {"success": True}


# -------- Slots / reminders --------

@router.post("/slots/generate")
async def generate_slots(
    payload: Optional[dict[str, Any]] = Body(default=None),
    service: BookingService = Depends(get_booking_service),
):
    req = parse_model(GenerateSlotsRequest, payload or {})
    result = await service.generate_slots(req.weeks_ahead)
    return {
        "success": True,
        "created": result["created"],
        "start": result["start"].isoformat(),
        "end": result["end"].isoformat(),
    }


@router.post("/reminders/process")
async def process_reminders(service: ReminderService = Depends(get_reminder_service)):
    run = await service.process_due()
    return {"success": True, **run.as_dict()}
