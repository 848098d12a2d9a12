# clinic_booking/services/calendar_invite.py
"""
Calendar invites (.ics) for booked appointments.

Times are written as wall-clock times with the practice TZID, the way the
slot grid stores them, so the event shows at the booked time in any client.
"""
from datetime import datetime, timezone
from typing import Optional

from icalendar import Calendar, Event

from clinic_booking.core.business import to_local
from clinic_booking.core.config import settings
from clinic_booking.schemas.booking import AppointmentStatus, AppointmentView

PRODID = "-//Clinic Booking//Appointments//DE"
UID_DOMAIN = "clinic-booking.local"

ICS_STATUS = {
    AppointmentStatus.PENDING: "TENTATIVE",
    AppointmentStatus.CONFIRMED: "CONFIRMED",
    AppointmentStatus.COMPLETED: "CONFIRMED",
    AppointmentStatus.CANCELLED: "CANCELLED",
}


def render_ics(appt: AppointmentView, dtstamp: Optional[datetime] = None) -> str:
    """Single-event VCALENDAR for ``appt``. No patient data goes into the invite."""
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")

    event = Event()
    event.add("uid", f"appointment-{appt.id}@{UID_DOMAIN}")
    event.add("dtstamp", (dtstamp or datetime.now(timezone.utc)).astimezone(timezone.utc))
    event.add("dtstart", appt.starts_at())
    event.add("dtend", to_local(appt.date, appt.end_time))
    event.add("summary", f"{settings.PRACTICE_NAME}: {appt.treatment.name}")

    description = []
    if appt.provider is not None:
        description.append(f"Provider: {appt.provider.display_name}")
    deadline = appt.cancellation_deadline.astimezone(appt.starts_at().tzinfo)
    description.append(f"Free cancellation until {deadline:%Y-%m-%d %H:%M}")
    event.add("description", "\n".join(description))

    if settings.PRACTICE_ADDRESS:
        event.add("location", settings.PRACTICE_ADDRESS)
    event.add("status", ICS_STATUS[appt.status])

    cal.add_component(event)
    return cal.to_ical().decode("utf-8")
