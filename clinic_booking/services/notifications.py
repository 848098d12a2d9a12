# clinic_booking/services/notifications.py
"""
Notification events and sinks.

The scheduling core builds a NotificationEvent and hands it to the
dispatcher; rendering and delivery (email, SMS) live behind the sinks.
A failed emission is logged and reported as False but never undoes the
scheduling transition that caused it.
"""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional, Protocol, Sequence

import httpx
from pydantic import BaseModel

from clinic_booking.core.config import settings
from clinic_booking.core.errors import ErrorSeverity, log_error
from clinic_booking.core.logging import get_logger
from clinic_booking.schemas.booking import (
    PRACTICE_SERVICE_LABEL,
    AppointmentView,
    EventKind,
    ReminderType,
)
from clinic_booking.services.calendar_invite import render_ics

logger = get_logger(__name__)

INVITE_KINDS = frozenset({EventKind.CREATED, EventKind.RESCHEDULED})


class NotificationEvent(BaseModel):
    kind: EventKind
    appointment_id: int
    booking_kind: str
    patient_name: str
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    language: str = "de"
    treatment: str
    provider: str
    date: date
    start_time: time
    end_time: time
    cancellation_deadline: datetime
    cancel_token: str
    previous_date: Optional[date] = None
    previous_start_time: Optional[time] = None
    reminder_type: Optional[ReminderType] = None
    # Calendar invite for events that put a new time in the patient's diary
    ics: Optional[str] = None

    @classmethod
    def for_appointment(cls, kind: EventKind, appt: AppointmentView, **extra: Any) -> "NotificationEvent":
        return cls(
            kind=kind,
            appointment_id=appt.id,
            booking_kind=appt.kind.label,
            patient_name=appt.patient.name,
            patient_email=appt.patient.email,
            patient_phone=appt.patient.phone,
            language=appt.language,
            treatment=appt.treatment.name,
            provider=appt.provider.display_name if appt.provider else PRACTICE_SERVICE_LABEL,
            date=appt.date,
            start_time=appt.start_time,
            end_time=appt.end_time,
            cancellation_deadline=appt.cancellation_deadline,
            cancel_token=appt.cancel_token,
            ics=render_ics(appt) if kind in INVITE_KINDS else None,
            **extra,
        )


class NotificationSink(Protocol):
    async def send(self, event: NotificationEvent) -> None: ...


class LoggingNotificationSink:
    """Writes events to the structured log. Default sink when no webhook is configured."""

    async def send(self, event: NotificationEvent) -> None:
        logger.info(
            "notification_event",
            event_kind=event.kind.value,
            appointment_id=event.appointment_id,
            booking_kind=event.booking_kind,
            date=str(event.date),
            start_time=str(event.start_time),
            language=event.language,
        )


class WebhookNotificationSink:
    """POSTs each event as JSON to the delivery service."""

    def __init__(self, url: str, timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout or settings.NOTIFY_TIMEOUT_SECONDS
        self._client = client

    async def send(self, event: NotificationEvent) -> None:
        payload = {"event": event.kind.value, "payload": event.model_dump(mode="json")}
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


class NotificationDispatcher:

    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks = list(sinks)

    async def emit(self, event: NotificationEvent) -> bool:
        """Deliver to every sink. Returns False if any sink failed; never raises."""
        delivered = True
        for sink in self.sinks:
            try:
                await sink.send(event)
            except Exception as e:
                delivered = False
                log_error(
                    e,
                    {
                        "component": "notifications",
                        "sink": type(sink).__name__,
                        "event_kind": event.kind.value,
                        "appointment_id": event.appointment_id,
                    },
                    ErrorSeverity.MEDIUM,
                )
        return delivered

    async def notify(self, kind: EventKind, appt: AppointmentView, **extra: Any) -> bool:
        return await self.emit(NotificationEvent.for_appointment(kind, appt, **extra))


def build_dispatcher() -> NotificationDispatcher:
    sinks: list[NotificationSink] = [LoggingNotificationSink()]
    if settings.NOTIFY_WEBHOOK_URL:
        sinks.append(WebhookNotificationSink(settings.NOTIFY_WEBHOOK_URL))
    return NotificationDispatcher(sinks)
