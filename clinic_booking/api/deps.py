# clinic_booking/api/deps.py
"""
FastAPI dependencies: the shared store, the notification dispatcher,
service instances and the admin API-key gate.

Tests swap the store or dispatcher through ``app.dependency_overrides``.
"""
import secrets
from functools import lru_cache

from fastapi import Depends, Header

from clinic_booking.core.config import settings
from clinic_booking.core.errors import BookingError, ErrorSeverity, log_error
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.memory import InMemoryBookingStore
from clinic_booking.crud.sql_store import SqlBookingStore
from clinic_booking.crud.store import BookingStore
from clinic_booking.db.session import AsyncSessionLocal
from clinic_booking.services.absence import AbsenceService
from clinic_booking.services.availability import AvailabilityService
from clinic_booking.services.booking import BookingService
from clinic_booking.services.notifications import NotificationDispatcher, build_dispatcher
from clinic_booking.services.reminders import ReminderService
from clinic_booking.services.schedule import ScheduleService

logger = get_logger(__name__)


class Unauthorized(BookingError):
    error_key = "auth.invalidApiKey"
    status_code = 401


@lru_cache
def get_store() -> BookingStore:
    backend = settings.STORE_BACKEND.lower()
    logger.info("store_backend_selected", backend=backend)
    if backend == "memory":
        return InMemoryBookingStore()
    return SqlBookingStore(AsyncSessionLocal)


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return build_dispatcher()


def get_availability_service(store: BookingStore = Depends(get_store)) -> AvailabilityService:
    return AvailabilityService(store)


def get_reminder_service(
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ReminderService:
    return ReminderService(store, dispatcher)


def get_booking_service(
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    reminders: ReminderService = Depends(get_reminder_service),
) -> BookingService:
    return BookingService(store, dispatcher, reminders=reminders)


def get_absence_service(
    store: BookingStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AbsenceService:
    return AbsenceService(store, dispatcher)



def get_schedule_service(store: BookingStore = Depends(get_store)) -> ScheduleService:
    return ScheduleService(store)

async def require_admin_key(x_api_key: str = Header(default="", alias="X-API-Key")) -> str:
    """Admin routes need X-API-Key == ADMIN_API_KEY. No key configured means no admin access."""
    expected = settings.ADMIN_API_KEY or ""
    if not expected or not secrets.compare_digest(x_api_key, expected):
        log_error(Exception("API key validation failed"),
                  {"component": "admin_auth", "has_key": bool(x_api_key)},
                  ErrorSeverity.MEDIUM)
        raise Unauthorized()
    return x_api_key
