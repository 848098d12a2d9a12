# clinic_booking/schemas/booking.py
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Literal, Optional, Type, TypeVar

import phonenumbers
import pydantic
from phonenumbers import PhoneNumberFormat
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clinic_booking.core.business import LOCAL_TZ, to_local
from clinic_booking.core.config import settings
from clinic_booking.core.errors import ValidationError

NAME_MIN = 2
NAME_MAX = 50
NAME_PATTERN = re.compile(r"^[a-zA-ZäöüÄÖÜßéèêëàâçñ '\-]+$")

EMAIL_MAX = 100
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PHONE_MIN = 6
PHONE_MAX = 20
PHONE_PATTERN = re.compile(r"^[0-9 +\-()]+$")

NOTES_MAX = 500
LABEL_MAX = 100

_TAG_PATTERN = re.compile(r"<[^>]*>")

PRACTICE_SERVICE_LABEL = "practice_service"
ANONYMIZED_NAME = "anonymized"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


class EventKind(str, Enum):
    CREATED = "created"
    REMINDER_DUE = "reminder_due"
    RESCHEDULED = "rescheduled"
    CANCELLED_BY_PATIENT = "cancelled_by_patient"
    CANCELLED_BY_PRACTICE = "cancelled_by_practice"


class ReminderType(str, Enum):
    H24 = "24h_before"
    H6 = "6h_before"

    @classmethod
    def for_offset(cls, hours: int) -> "ReminderType":
        return cls(f"{hours}h_before")


@dataclass(frozen=True)
class BookingKind:
    """Either a provider-scoped booking or a practice-service booking (no provider)."""

    provider_id: Optional[int] = None

    @classmethod
    def provider(cls, provider_id: int) -> "BookingKind":
        return cls(provider_id=provider_id)

    @classmethod
    def practice_service(cls) -> "BookingKind":
        return cls(provider_id=None)

    @property
    def is_practice_service(self) -> bool:
        return self.provider_id is None

    @property
    def label(self) -> str:
        return PRACTICE_SERVICE_LABEL if self.is_practice_service else "provider"

    def owns(self, slot: "TimeSlotView") -> bool:
        return slot.provider_id == self.provider_id


def sanitize_input(value: str) -> str:
    return _TAG_PATTERN.sub("", value)


# ---------- Views assembled at the store boundary ----------

class TimeSlotView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: Optional[int] = None
    date: date
    start_time: time
    end_time: time
    is_available: bool = True
    insurance_filter: Literal["all", "private_only"] = "all"

    @property
    def private_only(self) -> bool:
        return self.insurance_filter == "private_only"

    def starts_at(self, tz=LOCAL_TZ) -> datetime:
        return to_local(self.date, self.start_time, tz)


class ProviderView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: Optional[str] = None
    first_name: str
    last_name: str
    specialty: Optional[str] = None
    is_active: bool = True
    available_from: Optional[date] = None

    @property
    def display_name(self) -> str:
        parts = [self.title, self.first_name, self.last_name]
        return " ".join(p for p in parts if p)

    def bookable_on(self, day: date) -> bool:
        return self.is_active and (self.available_from is None or self.available_from <= day)


class TreatmentView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    duration_minutes: int
    booking_kind: Literal["provider", "practice_service"] = "provider"
    is_active: bool = True


class PatientView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    private_insurance: bool = False
    anonymized_at: Optional[datetime] = None


class AbsenceView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: int
    start_date: date
    end_date: date
    reason: str
    note: Optional[str] = None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class ScheduleEntryView(BaseModel):
    """A weekly consultation-hour block; weekday follows date.weekday() (0=Mon)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: int
    weekday: int
    start_time: time
    end_time: time
    is_bookable: bool = True
    insurance_filter: Literal["all", "private_only"] = "all"
    label: Optional[str] = None
    valid_from: date
    valid_until: Optional[date] = None

    def applies_on(self, day: date) -> bool:
        if day.weekday() != self.weekday or day < self.valid_from:
            return False
        return self.valid_until is None or day <= self.valid_until


class ReminderView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: int
    reminder_type: ReminderType
    scheduled_for: datetime
    sent_at: Optional[datetime] = None


class AppointmentView(BaseModel):
    """The appointment aggregate. Slots are ordered and contiguous."""

    id: int
    patient: PatientView
    treatment: TreatmentView
    provider: Optional[ProviderView] = None
    slots: list[TimeSlotView]
    status: AppointmentStatus
    notes: Optional[str] = None
    language: str = "de"
    cancel_token: str
    cancellation_deadline: datetime
    consent_given: bool = False
    created_at: Optional[datetime] = None

    @property
    def kind(self) -> BookingKind:
        return BookingKind(self.provider.id if self.provider else None)

    @property
    def slot_ids(self) -> list[int]:
        return [s.id for s in self.slots]

    @property
    def date(self) -> date:
        return self.slots[0].date

    @property
    def start_time(self) -> time:
        return self.slots[0].start_time

    @property
    def end_time(self) -> time:
        return self.slots[-1].end_time

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def starts_at(self, tz=LOCAL_TZ) -> datetime:
        return to_local(self.date, self.start_time, tz)

    def summary(self, *, include_patient: bool = True) -> dict[str, Any]:
        """Flat JSON-ready shape for API responses."""
        data = {
            "id": self.id,
            "status": self.status.value,
            "booking_kind": self.kind.label,
            "provider_id": self.provider.id if self.provider else None,
            "provider": self.provider.display_name if self.provider else None,
            "treatment": self.treatment.name,
            "date": self.date.isoformat(),
            "start_time": self.start_time.isoformat(timespec="minutes"),
            "end_time": self.end_time.isoformat(timespec="minutes"),
            "slot_ids": self.slot_ids,
            "language": self.language,
            "cancellation_deadline": self.cancellation_deadline.isoformat(),
        }
        if include_patient:
            data["patient"] = self.patient.model_dump(mode="json")
            data["notes"] = self.notes
        return data


class SlotOption(BaseModel):
    """A bookable start: the start slot plus every unit the treatment needs."""

    provider_id: Optional[int] = None
    date: date
    start_time: time
    end_time: time
    slot_ids: list[int]

    @property
    def start_slot_id(self) -> int:
        return self.slot_ids[0]


# ---------- Requests ----------

class PatientInput(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    private_insurance: bool = False

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        trimmed = sanitize_input(v or "").strip()
        if not trimmed:
            raise ValueError("validation.name.required")
        if len(trimmed) < NAME_MIN:
            raise ValueError("validation.name.tooShort")
        if len(trimmed) > NAME_MAX:
            raise ValueError("validation.name.tooLong")
        if not NAME_PATTERN.match(trimmed):
            raise ValueError("validation.name.invalid")
        return trimmed

    @field_validator("email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        trimmed = (v or "").strip()
        if not trimmed:
            return None
        if len(trimmed) > EMAIL_MAX:
            raise ValueError("validation.email.tooLong")
        if not EMAIL_PATTERN.match(trimmed):
            raise ValueError("validation.email.invalid")
        return trimmed.lower()

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        trimmed = (v or "").strip()
        if not trimmed:
            return None
        if len(trimmed) < PHONE_MIN:
            raise ValueError("validation.phone.tooShort")
        if len(trimmed) > PHONE_MAX:
            raise ValueError("validation.phone.tooLong")
        if not PHONE_PATTERN.match(trimmed):
            raise ValueError("validation.phone.invalid")
        try:
            parsed = phonenumbers.parse(trimmed, settings.PHONE_REGION)
        except phonenumbers.NumberParseException:
            raise ValueError("validation.phone.invalid")
        if not phonenumbers.is_possible_number(parsed):
            raise ValueError("validation.phone.invalid")
        return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)

    @model_validator(mode="after")
    def _contact_required(self) -> "PatientInput":
        if not self.email and not self.phone:
            raise ValueError("validation.contact.required")
        return self


class BookingRequest(BaseModel):
    patient: PatientInput
    treatment_type_id: int
    start_slot_id: int
    # None = practice-service booking
    provider_id: Optional[int] = None
    notes: Optional[str] = None
    language: Literal["de", "en", "tr"] = "de"
    consent_given: bool = False

    @field_validator("notes")
    @classmethod
    def _notes(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        cleaned = sanitize_input(v).strip()
        if len(cleaned) > NOTES_MAX:
            raise ValueError("validation.notes.tooLong")
        return cleaned or None

    @field_validator("consent_given")
    @classmethod
    def _consent(cls, v: bool) -> bool:
        if not v:
            raise ValueError("validation.consent.required")
        return v

    @property
    def kind(self) -> BookingKind:
        return BookingKind(self.provider_id)


class NewAppointment(BaseModel):
    """Everything the store needs to insert a patient + appointment atomically."""

    patient: PatientInput
    treatment_type_id: int
    provider_id: Optional[int] = None
    status: AppointmentStatus
    notes: Optional[str] = None
    language: str = "de"
    cancel_token: str
    cancellation_deadline: datetime
    consent_given: bool = False


class AbsenceCreate(BaseModel):
    provider_id: int
    start_date: date
    end_date: date
    reason: Literal["sick", "vacation", "other"] = "vacation"
    note: Optional[str] = None

    @field_validator("note")
    @classmethod
    def _note(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        cleaned = sanitize_input(v).strip()
        if len(cleaned) > NOTES_MAX:
            raise ValueError("validation.notes.tooLong")
        return cleaned or None

    @model_validator(mode="after")
    def _range(self) -> "AbsenceCreate":
        if self.end_date < self.start_date:
            raise ValueError("validation.dateRange.invalid")
        return self


class ScheduleEntryCreate(BaseModel):
    weekday: int = Field(..., ge=0, le=6)
    start_time: time
    end_time: time
    is_bookable: bool = True
    insurance_filter: Literal["all", "private_only"] = "all"
    label: Optional[str] = None
    # Taken from the URL on the admin route
    provider_id: Optional[int] = None
    # None = from today
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None

    @field_validator("label")
    @classmethod
    def _label(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        cleaned = sanitize_input(v).strip()
        if len(cleaned) > LABEL_MAX:
            raise ValueError("validation.label.tooLong")
        return cleaned or None

    @model_validator(mode="after")
    def _ranges(self) -> "ScheduleEntryCreate":
        if self.end_time <= self.start_time:
            raise ValueError("validation.timeRange.invalid")
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValueError("validation.dateRange.invalid")
        return self


class StatusUpdate(BaseModel):
    status: AppointmentStatus


class RescheduleRequest(BaseModel):
    new_start_slot_id: int


class CancelRequest(BaseModel):
    cancel_token: str = Field(..., min_length=1)


class GenerateSlotsRequest(BaseModel):
    weeks_ahead: int = 4


# ---------- Validation helpers ----------

M = TypeVar("M", bound=BaseModel)


def _error_key(err: dict) -> str:
    # Our validators raise ValueError("validation.<field>.<reason>")
    if err.get("type") == "value_error":
        ctx_error = (err.get("ctx") or {}).get("error")
        if ctx_error is not None:
            return str(ctx_error)
    field = ".".join(str(p) for p in err.get("loc", ()) if not isinstance(p, int)) or "request"
    if err.get("type") == "missing":
        return f"validation.{field}.required"
    return f"validation.{field}.invalid"


def validation_error_from(exc: pydantic.ValidationError) -> ValidationError:
    """Translate pydantic errors into one ValidationError carrying per-field keys."""
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "__root__"
        fields.setdefault(loc, _error_key(err))
    first_key = next(iter(fields.values()), ValidationError.error_key)
    return ValidationError(str(exc), error_key=first_key, details={"fields": fields})


def parse_model(model: Type[M], data: Any) -> M:
    """Validate raw input into ``model``, raising the booking ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise validation_error_from(exc) from exc
