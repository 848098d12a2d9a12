#!/usr/bin/env python3
"""
Database initialization for local SQLite runs: create tables, seed a demo
practice (providers, treatments) and generate the first weeks of slots.
"""

import asyncio
import os
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent))


async def init_database():
    """Create all tables"""
    from clinic_booking.db.base import init_db

    print("🗄️  Initializing database...")
    Path("data").mkdir(exist_ok=True)
    await init_db()
    print("✅ Database tables created successfully!")
    return True


async def create_sample_data(weeks_ahead: int = 4):
    """Seed providers and treatment types, then generate slots"""
    import sqlalchemy as sa

    from clinic_booking.crud.sql_store import SqlBookingStore
    from clinic_booking.db.models.provider import Provider
    from clinic_booking.db.models.treatment import TreatmentType
    from clinic_booking.db.session import AsyncSessionLocal
    from clinic_booking.services.booking import BookingService
    from clinic_booking.services.notifications import build_dispatcher

    print("📝 Creating sample data...")

    async with AsyncSessionLocal() as session:
        existing = (await session.execute(sa.select(Provider))).scalars().all()
        if existing:
            print("📊 Sample data already exists, skipping creation")
        else:
            session.add_all([
                Provider(title="Dr.", first_name="Anna", last_name="Becker", specialty="General practice"),
                Provider(title="Dr.", first_name="Jonas", last_name="Wolf", specialty="Internal medicine"),
                TreatmentType(name="Consultation", duration_minutes=10, booking_kind="provider"),
                TreatmentType(name="Check-up", duration_minutes=30, booking_kind="provider"),
                TreatmentType(name="Blood draw", duration_minutes=10, booking_kind="practice_service"),
                TreatmentType(name="ECG", duration_minutes=20, booking_kind="practice_service"),
            ])
            await session.commit()
            print("✅ Providers and treatments created")

    service = BookingService(SqlBookingStore(AsyncSessionLocal), build_dispatcher())
    result = await service.generate_slots(weeks_ahead)
    print(f"✅ Generated {result['created']} slots ({result['start']} → {result['end']})")


if __name__ == "__main__":
    print("🚀 Clinic Booking Database Initialization")
    print("=" * 50)

    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./data/clinic_booking.db")

    success = asyncio.run(init_database())

    if success:
        asyncio.run(create_sample_data())
        print("\n🎉 Database initialization complete!")
        print("\nNext steps:")
        print("1. Run: uvicorn clinic_booking.main:app --reload")
        print("2. Test: curl http://localhost:8000/healthz")
    else:
        print("\n❌ Database initialization failed!")
        sys.exit(1)
