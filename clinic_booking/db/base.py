# clinic_booking/db/base.py

"""
This file imports all the ORM models so Alembic can discover them.
Whenever you add a new model, import it here.
"""
from clinic_booking.db.models.patient import Patient
from clinic_booking.db.models.provider import Provider, Absence
from clinic_booking.db.models.treatment import TreatmentType
from clinic_booking.db.models.slot import TimeSlot
from clinic_booking.db.models.appointment import Appointment, AppointmentSlot
from clinic_booking.db.models.reminder import Reminder
from clinic_booking.db.models.schedule import PractitionerSchedule
from clinic_booking.db.session import engine, Base

__all__ = [
    "Patient", "Provider", "Absence", "TreatmentType", "TimeSlot",
    "Appointment", "AppointmentSlot", "Reminder", "PractitionerSchedule", "Base",
]

async def init_db(bind=None):
    """Initialize database by creating all tables"""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

def get_engine():
    """Get database engine for connection testing"""
    return engine
