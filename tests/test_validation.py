#!/usr/bin/env python3
"""
Tests for request validation, sanitization and error translation.
"""

import pytest

from clinic_booking.core.errors import NotFound, SlotConflict, ValidationError
from clinic_booking.schemas.booking import (
    AbsenceCreate,
    BookingKind,
    BookingRequest,
    PatientInput,
    TimeSlotView,
    parse_model,
    sanitize_input,
)

from conftest import BOOKING_DAY


def patient(**overrides):
    data = {"name": "Erika Musterfrau", "email": "erika@example.org", "phone": None}
    data.update(overrides)
    return data


def patient_error(**overrides):
    with pytest.raises(ValidationError) as exc:
        parse_model(PatientInput, patient(**overrides))
    return exc.value


@pytest.mark.unit
class TestPatientInput:

    def test_valid_patient_is_normalized(self):
        p = parse_model(PatientInput, patient(name="  Jürgen O'Neil-Schmidt ", email=" Erika@Example.ORG "))
        assert p.name == "Jürgen O'Neil-Schmidt"
        assert p.email == "erika@example.org"

    @pytest.mark.parametrize("name,key", [
        ("", "validation.name.required"),
        ("   ", "validation.name.required"),
        ("A", "validation.name.tooShort"),
        ("A" * 51, "validation.name.tooLong"),
        ("Robert'); DROP TABLE", "validation.name.invalid"),
        ("R2D2", "validation.name.invalid"),
    ])
    def test_name_rules(self, name, key):
        assert patient_error(name=name).details["fields"]["name"] == key

    def test_tags_are_stripped_from_name(self):
        p = parse_model(PatientInput, patient(name="<script>Anna</script> Weber"))
        assert p.name == "Anna Weber"

    @pytest.mark.parametrize("email", ["no-at-sign", "a@b", "two@@example.org", "space in@example.org"])
    def test_invalid_email(self, email):
        assert patient_error(email=email).details["fields"]["email"] == "validation.email.invalid"

    def test_email_too_long(self):
        email = "a" * 95 + "@example.org"
        assert patient_error(email=email).details["fields"]["email"] == "validation.email.tooLong"

    @pytest.mark.parametrize("phone,expected", [
        ("030 1234567", "+49301234567"),
        ("+49 (30) 1234-567", "+49301234567"),
        ("0171 2345678", "+491712345678"),
    ])
    def test_phone_normalized_to_e164(self, phone, expected):
        p = parse_model(PatientInput, patient(email=None, phone=phone))
        assert p.phone == expected

    @pytest.mark.parametrize("phone,key", [
        ("12345", "validation.phone.tooShort"),
        ("0" * 21, "validation.phone.tooLong"),
        ("030-CALL-NOW", "validation.phone.invalid"),
    ])
    def test_phone_rules(self, phone, key):
        assert patient_error(email=None, phone=phone).details["fields"]["phone"] == key

    def test_some_contact_required(self):
        err = patient_error(email="", phone="")
        assert err.error_key == "validation.contact.required"

    def test_private_insurance_defaults_to_statutory(self):
        assert parse_model(PatientInput, patient()).private_insurance is False


@pytest.mark.unit
class TestBookingRequest:

    def request(self, **overrides):
        data = {"patient": patient(), "treatment_type_id": 1, "start_slot_id": 5, "consent_given": True}
        data.update(overrides)
        return data

    def test_defaults(self):
        req = parse_model(BookingRequest, self.request())
        assert req.language == "de"
        assert req.notes is None
        assert req.kind == BookingKind.practice_service()

    def test_provider_kind(self):
        req = parse_model(BookingRequest, self.request(provider_id=3))
        assert req.kind == BookingKind.provider(3)
        assert req.kind.label == "provider"

    def test_notes_are_sanitized(self):
        req = parse_model(BookingRequest, self.request(notes="  <i>Allergic</i> to latex  "))
        assert req.notes == "Allergic to latex"

    def test_notes_too_long(self):
        with pytest.raises(ValidationError) as exc:
            parse_model(BookingRequest, self.request(notes="x" * 501))
        assert exc.value.details["fields"]["notes"] == "validation.notes.tooLong"

    def test_unsupported_language(self):
        with pytest.raises(ValidationError) as exc:
            parse_model(BookingRequest, self.request(language="fr"))
        assert exc.value.details["fields"]["language"] == "validation.language.invalid"

    def test_missing_fields_get_required_keys(self):
        with pytest.raises(ValidationError) as exc:
            parse_model(BookingRequest, {"consent_given": True})
        fields = exc.value.details["fields"]
        assert fields["patient"] == "validation.patient.required"
        assert fields["start_slot_id"] == "validation.start_slot_id.required"

    def test_consent_required(self):
        with pytest.raises(ValidationError) as exc:
            parse_model(BookingRequest, self.request(consent_given=False))
        assert exc.value.error_key == "validation.consent.required"
        assert exc.value.status_code == 422

    def test_model_instance_passes_through(self):
        req = parse_model(BookingRequest, self.request())
        assert parse_model(BookingRequest, req) is req


@pytest.mark.unit
class TestAbsenceCreate:

    def test_single_day(self):
        a = parse_model(AbsenceCreate, {"provider_id": 1, "start_date": "2025-04-01", "end_date": "2025-04-01"})
        assert a.reason == "vacation"

    def test_note_sanitized(self):
        a = parse_model(AbsenceCreate, {"provider_id": 1, "start_date": "2025-04-01",
                                        "end_date": "2025-04-02", "note": "<b>Congress</b>"})
        assert a.note == "Congress"


@pytest.mark.unit
class TestBookingKind:

    def test_owns_matching_slots_only(self):
        slot = TimeSlotView(id=1, provider_id=7, date=BOOKING_DAY, start_time="09:00", end_time="09:10")
        service_slot = TimeSlotView(id=2, provider_id=None, date=BOOKING_DAY, start_time="09:00", end_time="09:10")

        assert BookingKind.provider(7).owns(slot)
        assert not BookingKind.provider(8).owns(slot)
        assert not BookingKind.practice_service().owns(slot)
        assert BookingKind.practice_service().owns(service_slot)
        assert BookingKind.practice_service().label == "practice_service"


@pytest.mark.unit
class TestErrors:

    def test_error_payload(self):
        err = SlotConflict(details={"slot_ids": [1, 2]})
        assert err.to_dict() == {"success": False, "error_key": "booking.slotConflict",
                                 "details": {"slot_ids": [1, 2]}}
        assert err.status_code == 409

    def test_custom_key(self):
        err = NotFound(error_key="provider.notFound")
        assert err.to_dict() == {"success": False, "error_key": "provider.notFound"}
        assert err.status_code == 404

    def test_sanitize_input(self):
        assert sanitize_input("<p>Hello</p> <br/>world") == "Hello world"
