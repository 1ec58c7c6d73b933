"""Script to list doctor availability profiles in the database"""
from dotenv import load_dotenv
from app.db import get_session
from app.services.profiles import DoctorProfileStore, profile_read

load_dotenv()


def check_doctors(session_factory=get_session):
    """Print each doctor's status and weekly hours"""
    profiles = [profile_read(p) for p in DoctorProfileStore(session_factory).list()]
    if not profiles:
        print("No doctors found in the database.")
        return []
    print(f"Found {len(profiles)} doctors in the database:")
    for profile in profiles:
        hours = ", ".join(f"{day} {w['start']}-{w['end']}" for day, w in profile.working_hours.items())
        print(f"- {profile.doctor_id} ({profile.name}, {profile.specialty}): "
              f"{profile.availability_status.value}; {hours or 'no hours'}")
    return profiles


if __name__ == "__main__":
    check_doctors()
