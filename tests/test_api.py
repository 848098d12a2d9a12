#!/usr/bin/env python3
"""
HTTP tests for the public booking and cancellation routes and the admin API.

Services are swapped for fixture instances backed by the seeded in-memory
practice, a frozen clock and an always-open calendar.
"""

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from clinic_booking.api.deps import (
    get_absence_service,
    get_availability_service,
    get_booking_service,
    get_reminder_service,
    get_schedule_service,
    get_store,
)
from clinic_booking.core.config import settings
from clinic_booking.main import app
from clinic_booking.services.booking import BookingService
from clinic_booking.services.notifications import NotificationDispatcher
from clinic_booking.services.reminders import ReminderService
from clinic_booking.services.schedule import ScheduleService

from conftest import ADMIN_HEADERS, BOOKING_DAY, OTHER_DAY, RecordingSink, booking_payload, local_dt

pytestmark = pytest.mark.integration


@pytest.fixture
def client(store, clock, booking_service, availability, absence_service, reminder_service):
    app.dependency_overrides.update({
        get_schedule_service: lambda: ScheduleService(store, clock),
        get_store: lambda: store,
        get_booking_service: lambda: booking_service,
        get_availability_service: lambda: availability,
        get_absence_service: lambda: absence_service,
        get_reminder_service: lambda: reminder_service,
    })
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def booked(client, practice):
    """A check-up booked through the API on BOOKING_DAY at 09:00."""
    response = client.post("/bookings", json=booking_payload(
        practice.becker(9).id, practice.checkup.id, practice.dr_becker.id,
    ))
    assert response.status_code == 201
    return response.json()


class TestHealth:

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_readyz(self, client):
        response = client.get("/readyz")
        assert response.status_code == 200
        assert response.json() == {"store": "ok", "backend": "memory"}

    def test_metrics_reports_errors(self, client):
        client.get("/cancel", params={"token": "nope"})
        data = client.get("/metrics").json()
        assert data["status"] == "healthy"
        assert data["errors"]["by_type"] == {"InvalidToken": 1}


class TestAvailabilityRoutes:

    def test_dates(self, client, practice):
        response = client.get("/availability/dates", params={
            "start": (BOOKING_DAY - timedelta(days=1)).isoformat(),
            "end": OTHER_DAY.isoformat(),
            "provider_id": practice.dr_becker.id,
            "treatment_id": practice.checkup.id,
        })
        assert response.status_code == 200
        assert response.json() == {"dates": ["2025-03-10", "2025-03-11"]}

    def test_slots(self, client, practice):
        response = client.get("/availability/slots", params={
            "day": BOOKING_DAY.isoformat(), "treatment_id": practice.ecg.id,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["date"] == "2025-03-10"
        first = data["slots"][0]
        assert first == {
            "start_slot_id": practice.service(8).id,
            "slot_ids": [practice.service(8).id, practice.service(8, 10).id],
            "provider_id": None,
            "start_time": "08:00",
            "end_time": "08:20",
        }

    def test_inverted_range(self, client, practice):
        response = client.get("/availability/dates", params={
            "start": OTHER_DAY.isoformat(), "end": BOOKING_DAY.isoformat(), "provider_id": practice.dr_becker.id,
        })
        assert response.status_code == 422
        assert response.json()["error_key"] == "validation.dateRange.invalid"

    def test_malformed_date(self, client):
        response = client.get("/availability/slots", params={"day": "next tuesday"})
        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["details"]["fields"]["query.day"] == "validation.query.day.invalid"

    def test_unknown_provider(self, client):
        response = client.get("/availability/slots", params={"day": BOOKING_DAY.isoformat(), "provider_id": 999})
        assert response.status_code == 404
        assert response.json()["error_key"] == "provider.notFound"


class TestBookingRoutes:

    @pytest.mark.essential
    def test_create_booking(self, booked, practice):
        assert booked["success"] is True
        appt = booked["appointment"]
        assert appt["status"] == "confirmed"
        assert appt["booking_kind"] == "provider"
        assert appt["provider"] == "Dr. Anna Becker"
        assert appt["start_time"] == "09:00"
        assert appt["end_time"] == "09:30"
        assert appt["slot_ids"] == [practice.becker(9).id, practice.becker(9, 10).id, practice.becker(9, 20).id]
        assert "patient" not in appt
        assert len(booked["cancel_token"]) >= 32

    @pytest.mark.essential
    def test_conflict_is_409(self, client, booked, practice):
        response = client.post("/bookings", json=booking_payload(
            practice.becker(9, 20).id, practice.consultation.id, practice.dr_becker.id,
        ))
        assert response.status_code == 409
        assert response.json() == {"success": False, "error_key": "booking.slotConflict",
                                    "details": {"slot_ids": [practice.becker(9, 20).id]}}

    def test_validation_error_is_422(self, client, practice):
        response = client.post("/bookings", json=booking_payload(
            practice.becker(9).id, practice.consultation.id, practice.dr_becker.id,
            patient={"email": "broken", "phone": None},
        ))
        assert response.status_code == 422
        assert response.json()["details"]["fields"]["patient.email"] == "validation.email.invalid"
        assert practice.is_available(practice.becker(9)) == [True]

    def test_non_object_body(self, client):
        response = client.post("/bookings", json=["not", "an", "object"])
        assert response.status_code == 422
        assert response.json()["success"] is False


class TestCancelRoutes:

    def test_preview(self, client, booked):
        response = client.get("/cancel", params={"token": booked["cancel_token"]})
        assert response.status_code == 200
        data = response.json()
        assert data["cancellable"] is True
        assert data["reason"] is None
        assert data["appointment"]["id"] == booked["appointment"]["id"]

    def test_unknown_token_is_404(self, client):
        response = client.get("/cancel", params={"token": "nope"})
        assert response.status_code == 404
        assert response.json()["error_key"] == "cancel.invalidToken"

    @pytest.mark.essential
    def test_cancel_then_cancel_again(self, client, booked, practice, sink):
        token = booked["cancel_token"]

        first = client.post("/cancel", json={"cancel_token": token})
        second = client.post("/cancel", json={"cancel_token": token})

        assert first.status_code == 200
        assert first.json()["appointment"]["status"] == "cancelled"
        assert second.status_code == 409
        assert second.json()["error_key"] == "cancel.alreadyCancelled"
        assert practice.is_available(practice.becker(9)) == [True]
        assert sink.kinds().count("cancelled_by_patient") == 1

    def test_deadline_passed(self, client, booked, clock):
        clock.set(local_dt(BOOKING_DAY, 8))
        response = client.post("/cancel", json={"cancel_token": booked["cancel_token"]})
        assert response.status_code == 400
        assert response.json()["error_key"] == "cancel.deadline"

    def test_missing_token(self, client):
        response = client.post("/cancel", json={})
        assert response.status_code == 422
        assert response.json()["error_key"] == "validation.cancel_token.required"


class TestAdminRoutes:

    @pytest.mark.parametrize("headers", [{}, {"X-API-Key": "wrong"}])
    def test_requires_api_key(self, client, headers):
        response = client.get("/admin/appointments", params={"start": "2025-03-10", "end": "2025-03-10"},
                              headers=headers)
        assert response.status_code == 401
        assert response.json()["error_key"] == "auth.invalidApiKey"

    def test_list_and_get(self, client, booked):
        listed = client.get("/admin/appointments", headers=ADMIN_HEADERS,
                            params={"start": "2025-03-10", "end": "2025-03-11", "status": ["confirmed"]})
        assert listed.status_code == 200
        appts = listed.json()["appointments"]
        assert [a["id"] for a in appts] == [booked["appointment"]["id"]]
        assert appts[0]["patient"]["name"] == "Max Mustermann"

        single = client.get(f"/admin/appointments/{booked['appointment']['id']}", headers=ADMIN_HEADERS)
        assert single.json()["appointment"]["treatment"] == "Check-up"

        missing = client.get("/admin/appointments/999", headers=ADMIN_HEADERS)
        assert missing.status_code == 404

    def test_list_with_unknown_status(self, client):
        response = client.get("/admin/appointments", headers=ADMIN_HEADERS,
                              params={"start": "2025-03-10", "end": "2025-03-11", "status": ["no_show"]})
        assert response.status_code == 422

    def test_status_transitions(self, client, booked, sink):
        appt_id = booked["appointment"]["id"]

        cancelled = client.patch(f"/admin/appointments/{appt_id}/status", json={"status": "cancelled"},
                                 headers=ADMIN_HEADERS)
        reopened = client.patch(f"/admin/appointments/{appt_id}/status", json={"status": "confirmed"},
                                headers=ADMIN_HEADERS)

        assert cancelled.status_code == 200
        assert cancelled.json()["appointment"]["status"] == "cancelled"
        assert reopened.status_code == 409
        assert reopened.json()["error_key"] == "appointment.invalidTransition"
        assert "cancelled_by_practice" in sink.kinds()

    def test_reschedule(self, client, booked, practice):
        appt_id = booked["appointment"]["id"]
        response = client.post(f"/admin/appointments/{appt_id}/reschedule", headers=ADMIN_HEADERS,
                               json={"new_start_slot_id": practice.becker(10, day=OTHER_DAY).id})
        assert response.status_code == 200
        moved = response.json()["appointment"]
        assert moved["date"] == "2025-03-11"
        assert moved["start_time"] == "10:00"
        assert practice.is_available(practice.becker(9)) == [True]

    def test_anonymize(self, client, booked):
        appt = booked["appointment"]
        refused = client.post("/admin/patients/1/anonymize", headers=ADMIN_HEADERS)
        assert refused.status_code == 409
        assert refused.json()["error_key"] == "patient.activeAppointments"

        client.patch(f"/admin/appointments/{appt['id']}/status", json={"status": "completed"},
                     headers=ADMIN_HEADERS)
        done = client.post("/admin/patients/1/anonymize", headers=ADMIN_HEADERS)
        assert done.status_code == 200
        assert done.json()["patient"]["name"] == "anonymized"
        assert done.json()["patient"]["email"] is None

    def test_absence_lifecycle(self, client, booked, practice):
        created = client.post("/admin/absences", headers=ADMIN_HEADERS, json={
            "provider_id": practice.dr_becker.id, "start_date": "2025-03-10", "end_date": "2025-03-10",
            "reason": "sick",
        })
        assert created.status_code == 201
        body = created.json()
        assert body["cancelled_appointment_ids"] == [booked["appointment"]["id"]]
        absence_id = body["absence"]["id"]

        applied = client.post(f"/admin/absences/{absence_id}/apply", headers=ADMIN_HEADERS)
        assert applied.json()["cancelled_appointment_ids"] == []

        listed = client.get("/admin/absences", headers=ADMIN_HEADERS)
        assert [a["id"] for a in listed.json()["absences"]] == [absence_id]

        assert client.delete(f"/admin/absences/{absence_id}", headers=ADMIN_HEADERS).status_code == 200
        assert client.delete(f"/admin/absences/{absence_id}", headers=ADMIN_HEADERS).status_code == 404

    def test_generate_slots(self, client):
        response = client.post("/admin/slots/generate", headers=ADMIN_HEADERS, json={"weeks_ahead": 1})
        assert response.status_code == 200
        body = response.json()
        assert body["start"] == "2025-03-01"
        assert body["end"] == "2025-03-07"
        assert body["created"] == 3 * 7 * 60

        bad = client.post("/admin/slots/generate", headers=ADMIN_HEADERS, json={"weeks_ahead": 0})
        assert bad.status_code == 422
        assert bad.json()["error_key"] == "validation.weeksAhead.range"

    def test_process_reminders(self, client, booked, clock):
        clock.set(local_dt(BOOKING_DAY, 4))
        response = client.post("/admin/reminders/process", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 2, "sent": 2, "skipped": 0, "failed": 0}


class TestCatalogRoutes:

    def test_providers(self, client):
        response = client.get("/providers")
        assert response.status_code == 200
        providers = response.json()["providers"]
        assert [p["last_name"] for p in providers] == ["Becker", "Wolf"]
        assert providers[0]["title"] == "Dr."

    def test_treatments(self, client):
        everything = client.get("/treatments").json()["treatments"]
        practice_only = client.get("/treatments", params={"booking_kind": "practice_service"}).json()["treatments"]

        assert [t["name"] for t in everything] == ["Blood draw", "Check-up", "Consultation", "ECG"]
        assert [t["name"] for t in practice_only] == ["Blood draw", "ECG"]
        assert practice_only[1]["duration_minutes"] == 20


class TestCalendarDownload:

    def test_ics_by_token(self, client, booked):
        response = client.get("/bookings/calendar.ics", params={"token": booked["cancel_token"]})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        assert "attachment" in response.headers["content-disposition"]
        assert "DTSTART;TZID=Europe/Berlin:20250310T090000" in response.text

    def test_unknown_token(self, client):
        response = client.get("/bookings/calendar.ics", params={"token": "nope"})
        assert response.status_code == 404
        assert response.json()["error_key"] == "cancel.invalidToken"


class TestScheduleRoutes:

    def test_requires_api_key(self, client, practice):
        response = client.get(f"/admin/providers/{practice.dr_wolf.id}/schedule")
        assert response.status_code == 401

    def test_schedule_lifecycle(self, client, practice):
        url = f"/admin/providers/{practice.dr_wolf.id}/schedule"
        created = client.post(url, headers=ADMIN_HEADERS, json={
            "weekday": 0, "start_time": "14:00", "end_time": "16:00",
            "insurance_filter": "private_only", "label": "Privatsprechstunde",
        })
        assert created.status_code == 201
        entry = created.json()["entry"]
        assert entry["provider_id"] == practice.dr_wolf.id
        assert entry["valid_from"] == "2025-03-01"
        assert entry["label"] == "Privatsprechstunde"

        listed = client.get(url, headers=ADMIN_HEADERS)
        assert [e["id"] for e in listed.json()["entries"]] == [entry["id"]]

        assert client.delete(f"/admin/schedule/{entry['id']}", headers=ADMIN_HEADERS).status_code == 200
        gone = client.delete(f"/admin/schedule/{entry['id']}", headers=ADMIN_HEADERS)
        assert gone.status_code == 404
        assert gone.json()["error_key"] == "schedule.notFound"

    def test_rejects_bad_entries(self, client, practice):
        unknown = client.post("/admin/providers/999/schedule", headers=ADMIN_HEADERS,
                              json={"weekday": 0, "start_time": "08:00", "end_time": "09:00"})
        inverted = client.post(f"/admin/providers/{practice.dr_wolf.id}/schedule", headers=ADMIN_HEADERS,
                               json={"weekday": 0, "start_time": "09:00", "end_time": "08:00"})

        assert unknown.status_code == 404
        assert unknown.json()["error_key"] == "provider.notFound"
        assert inverted.status_code == 422
        assert inverted.json()["error_key"] == "validation.timeRange.invalid"

    @pytest.mark.essential
    def test_generated_private_hours_hidden_from_statutory_patients(self, client, practice):
        client.post(f"/admin/providers/{practice.dr_wolf.id}/schedule", headers=ADMIN_HEADERS, json={
            "weekday": 0, "start_time": "14:00", "end_time": "16:00", "insurance_filter": "private_only",
        })

        generated = client.post("/admin/slots/generate", headers=ADMIN_HEADERS, json={"weeks_ahead": 1})
        # Becker and the practice service get every opening hour; Wolf only the Monday afternoon
        assert generated.json()["created"] == 2 * 7 * 60 + 12

        params = {"day": "2025-03-03", "provider_id": practice.dr_wolf.id}
        statutory = client.get("/availability/slots", params={**params, "private_insurance": False})
        private = client.get("/availability/slots", params={**params, "private_insurance": True})

        assert statutory.json()["slots"] == []
        assert [s["start_time"] for s in private.json()["slots"]][:2] == ["14:00", "14:10"]
        assert len(private.json()["slots"]) == 12


class SlowSink(RecordingSink):
    """Delivery that takes longer than the store timeout."""

    async def send(self, event):
        await asyncio.sleep(0.2)
        await super().send(event)


class TestSlowNotifications:
    """Post-commit delivery runs outside the store timeout and is never retried with the write."""

    @pytest.fixture
    def slow_sink(self):
        return SlowSink()

    @pytest.fixture
    def slow_client(self, store, calendar, clock, availability, slow_sink, monkeypatch):
        monkeypatch.setattr(settings, "STORE_TIMEOUT_SECONDS", 0.05)
        dispatcher = NotificationDispatcher([slow_sink])
        service = BookingService(
            store, dispatcher, calendar=calendar, clock=clock, unit_minutes=10, deadline_hours=24,
            reminders=ReminderService(store, dispatcher, clock, offsets_hours=[24, 6]),
        )
        app.dependency_overrides.update({
            get_store: lambda: store,
            get_booking_service: lambda: service,
            get_availability_service: lambda: availability,
        })
        with TestClient(app) as c:
            yield c
        app.dependency_overrides.clear()

    @pytest.mark.essential
    def test_slow_delivery_does_not_fail_booking(self, slow_client, store, practice, slow_sink):
        response = slow_client.post("/bookings", json=booking_payload(
            practice.becker(9).id, practice.checkup.id, practice.dr_becker.id,
        ))

        assert response.status_code == 201
        assert response.json()["appointment"]["start_time"] == "09:00"
        assert len(store.appointments) == 1
        assert slow_sink.kinds() == ["created"]

    @pytest.mark.essential
    def test_slow_delivery_does_not_fail_cancellation(self, slow_client, practice, slow_sink):
        booked = slow_client.post("/bookings", json=booking_payload(
            practice.becker(9).id, practice.consultation.id, practice.dr_becker.id,
        )).json()

        response = slow_client.post("/cancel", json={"cancel_token": booked["cancel_token"]})

        assert response.status_code == 200
        assert response.json()["appointment"]["status"] == "cancelled"
        assert slow_sink.kinds() == ["created", "cancelled_by_patient"]
        assert practice.is_available(practice.becker(9)) == [True]
