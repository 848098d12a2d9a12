#!/usr/bin/env python3
"""
Shared pytest configuration and fixtures.

The environment is fixed before anything from clinic_booking is imported:
settings and the SQL engine are built at import time.
"""

import os
import sys
import time
from datetime import date, datetime, time as dtime, timedelta

import pytest
import pytest_asyncio

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

TEST_ENV = {
    'APP_ENV': 'testing',
    'DATABASE_URL': 'sqlite+aiosqlite:///:memory:',
    'STORE_BACKEND': 'memory',
    'ADMIN_API_KEY': 'test_admin_key',
    'NOTIFY_WEBHOOK_URL': '',
    'PRACTICE_TIMEZONE': 'Europe/Berlin',
    'SLOT_UNIT_MINUTES': '10',
    'CANCELLATION_DEADLINE_HOURS': '24',
    'REMINDER_OFFSETS_HOURS': '24,6',
}
os.environ.update(TEST_ENV)

from clinic_booking.core.business import LOCAL_TZ, UTC, PracticeCalendar, add_minutes  # noqa: E402
from clinic_booking.core.errors import error_aggregator  # noqa: E402
from clinic_booking.crud.memory import InMemoryBookingStore  # noqa: E402
from clinic_booking.services.absence import AbsenceService  # noqa: E402
from clinic_booking.services.availability import AvailabilityService  # noqa: E402
from clinic_booking.services.booking import BookingService  # noqa: E402
from clinic_booking.services.notifications import NotificationDispatcher  # noqa: E402
from clinic_booking.services.reminders import ReminderService  # noqa: E402

# Saturday before the booking week; every test day lies after it
CLOCK_START = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
BOOKING_DAY = date(2025, 3, 10)
OTHER_DAY = date(2025, 3, 11)
ADMIN_HEADERS = {"X-API-Key": TEST_ENV["ADMIN_API_KEY"]}


class FrozenClock:
    """Callable clock the services read ``now`` from."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingSink:
    """Notification sink that remembers every event."""

    def __init__(self):
        self.events = []

    async def send(self, event):
        self.events.append(event)

    def kinds(self):
        return [e.kind.value for e in self.events]

    def of_kind(self, kind):
        return [e for e in self.events if e.kind.value == kind]


class FailingSink:
    """Notification sink whose transport is down."""

    def __init__(self):
        self.attempts = 0

    async def send(self, event):
        self.attempts += 1
        raise RuntimeError("smtp relay unreachable")


def open_all_week() -> PracticeCalendar:
    """Practice open 08:00-18:00 every day, so tests can use any date."""
    return PracticeCalendar(hours={d: (dtime(8, 0), dtime(18, 0)) for d in range(7)})


def seed_day(store, provider_id, day, start=dtime(8, 0), end=dtime(12, 0), unit=10, **slot_kwargs):
    """Create contiguous unit slots for one owner and day; returns {start_time: slot}."""
    slots = {}
    cur = start
    while cur < end:
        nxt = add_minutes(cur, unit)
        slots[cur] = store.add_slot(provider_id, day, cur, nxt, **slot_kwargs)
        cur = nxt
    return slots


def local_dt(day, hour, minute=0, second=0):
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=LOCAL_TZ)


def booking_payload(start_slot_id, treatment_id, provider_id=None, **overrides):
    patient = {
        "name": "Max Mustermann",
        "email": "Max.Mustermann@Example.org",
        "phone": "030 1234567",
        "private_insurance": False,
    }
    patient.update(overrides.pop("patient", {}))
    payload = {
        "patient": patient,
        "treatment_type_id": treatment_id,
        "start_slot_id": start_slot_id,
        "provider_id": provider_id,
        "language": "de",
        "consent_given": True,
    }
    payload.update(overrides)
    return payload


class Practice:
    """Seeded in-memory practice: two providers, a practice service, four treatments."""

    def __init__(self, calendar):
        self.store = InMemoryBookingStore(calendar)
        self.dr_becker = self.store.add_provider("Anna", "Becker", title="Dr.", specialty="General practice")
        self.dr_wolf = self.store.add_provider("Jonas", "Wolf", title="Dr.", specialty="Internal medicine")

        self.consultation = self.store.add_treatment("Consultation", 10)
        self.checkup = self.store.add_treatment("Check-up", 30)
        self.blood_draw = self.store.add_treatment("Blood draw", 10, booking_kind="practice_service")
        self.ecg = self.store.add_treatment("ECG", 20, booking_kind="practice_service")

        self.becker_slots = {
            BOOKING_DAY: seed_day(self.store, self.dr_becker.id, BOOKING_DAY),
            OTHER_DAY: seed_day(self.store, self.dr_becker.id, OTHER_DAY),
        }
        self.wolf_slots = {BOOKING_DAY: seed_day(self.store, self.dr_wolf.id, BOOKING_DAY)}
        self.service_slots = {BOOKING_DAY: seed_day(self.store, None, BOOKING_DAY)}

    def slot(self, owner_slots, day, hour, minute=0):
        return owner_slots[day][dtime(hour, minute)]

    def becker(self, hour, minute=0, day=BOOKING_DAY):
        return self.slot(self.becker_slots, day, hour, minute)

    def wolf(self, hour, minute=0, day=BOOKING_DAY):
        return self.slot(self.wolf_slots, day, hour, minute)

    def service(self, hour, minute=0, day=BOOKING_DAY):
        return self.slot(self.service_slots, day, hour, minute)

    def is_available(self, *slots):
        return [self.store.slots[s.id].is_available for s in slots]


@pytest.fixture
def calendar():
    return open_all_week()


@pytest.fixture
def clock():
    return FrozenClock(CLOCK_START)


@pytest.fixture
def practice(calendar):
    return Practice(calendar)


@pytest.fixture
def store(practice):
    return practice.store


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(sink):
    return NotificationDispatcher([sink])


@pytest.fixture
def reminder_service(store, dispatcher, clock):
    return ReminderService(store, dispatcher, clock, offsets_hours=[24, 6])


@pytest.fixture
def booking_service(store, dispatcher, calendar, clock, reminder_service):
    return BookingService(
        store, dispatcher,
        calendar=calendar, clock=clock, unit_minutes=10, deadline_hours=24,
        reminders=reminder_service,
    )


@pytest.fixture
def availability(store, calendar, clock):
    return AvailabilityService(store, calendar, clock, unit_minutes=10)


@pytest.fixture
def absence_service(store, dispatcher):
    return AbsenceService(store, dispatcher)


@pytest_asyncio.fixture
async def book(booking_service, practice):
    """Book through the service: ``await book(slot, treatment, provider_id)``."""
    async def _book(slot, treatment=None, provider_id="auto", **overrides):
        treatment = treatment or practice.consultation
        if provider_id == "auto":
            provider_id = slot.provider_id
        return await booking_service.create(booking_payload(slot.id, treatment.id, provider_id, **overrides))
    return _book


@pytest.fixture(autouse=True)
def reset_error_aggregator():
    error_aggregator.reset()
    yield
    error_aggregator.reset()


@pytest.fixture(autouse=True)
def monitor_test_performance(request):
    """Warn about slow tests"""
    start_time = time.time()
    yield
    duration = time.time() - start_time

    node = request.node
    if node.get_closest_marker("unit") and duration > 1.0:
        print(f"⚠️ Unit test {node.name} took {duration:.2f}s")
    elif node.get_closest_marker("essential") and duration > 5.0:
        print(f"⚠️ Essential test {node.name} took {duration:.2f}s")


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Pure unit tests with no external dependencies")
    config.addinivalue_line("markers", "essential: Core booking guarantees that must never regress")
    config.addinivalue_line("markers", "integration: Tests against the SQL store or the HTTP app")


def pytest_collection_modifyitems(config, items):
    """Run essential tests first, integration tests last"""
    def test_priority(item):
        if item.get_closest_marker("essential"):
            return 0
        if item.get_closest_marker("integration"):
            return 2
        return 1

    items.sort(key=test_priority)
