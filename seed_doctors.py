from dotenv import load_dotenv
from sqlmodel import select
from app.db import get_session, init_db
from app.services.profiles import DoctorProfileStore
from app.models import DoctorProfile

load_dotenv()


def seed_doctors(force_replace=False, session_factory=get_session):
    """Seed the database with demo doctor availability profiles"""
    doctors_data = [
        {
            "doctor_id": "dr-smith",
            "name": "Dr. Smith",
            "specialty": "General Medicine",
            "working_hours": {
                "monday": {"start": "09:00", "end": "17:00"},
                "tuesday": {"start": "09:00", "end": "17:00"},
                "wednesday": {"start": "09:00", "end": "17:00"},
                "thursday": {"start": "09:00", "end": "17:00"},
                "friday": {"start": "09:00", "end": "17:00"},
                "saturday": {"start": "09:00", "end": "12:00"},
            },
        },
        {
            "doctor_id": "dr-johnson",
            "name": "Dr. Johnson",
            "specialty": "Cardiology",
            # Older profiles were saved in the availability page's format
            "working_hours": {
                "monday": {"startTime": "10:00", "endTime": "16:00"},
                "wednesday": {"startTime": "10:00", "endTime": "16:00"},
                "friday": {"startTime": "10:00", "endTime": "16:00"},
            },
        },
        {
            "doctor_id": "dr-williams",
            "name": "Dr. Williams",
            "specialty": "Pediatrics",
            "working_hours": {
                "monday": ["08:00-12:00", "14:00-17:00"],
                "tuesday": ["08:00-12:00", "14:00-17:00"],
                "thursday": ["08:00-12:00", "14:00-17:00"],
                "saturday": "08:00-12:00",
            },
        },
    ]

    store = DoctorProfileStore(session_factory)
    with session_factory() as session:
        existing_doctors = session.exec(select(DoctorProfile)).all()
        if existing_doctors and not force_replace:
            print("Doctors already exist in the database. Skipping seed.")
            return
        if existing_doctors and force_replace:
            print("Force replacing doctor availability profiles...")
            for doctor in existing_doctors:
                session.delete(doctor)
            session.commit()

    for doctor_data in doctors_data:
        store.upsert(**doctor_data)
    print(f"Seeded {len(doctors_data)} doctor availability profiles.")


if __name__ == "__main__":
    init_db()
    seed_doctors(force_replace=True)
