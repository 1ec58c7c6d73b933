import logging
from typing import Optional

from sqlmodel import select

from app.db import get_session, guard_persistence
from app.exceptions import NotFoundError
from app.models import AvailabilityStatus, DoctorProfile, DoctorProfileRead, utcnow
from app.utils.helpers import dump_working_hours, normalize_working_hours


logger = logging.getLogger(__name__)


class DoctorProfileStore:
    """Working hours and the manual availability override for each doctor."""

    def __init__(self, session_factory=get_session):
        self.session_factory = session_factory

    @staticmethod
    def find(session, doctor_id: str) -> Optional[DoctorProfile]:
        return session.exec(select(DoctorProfile).where(DoctorProfile.doctor_id == doctor_id)).first()

    @guard_persistence
    def get(self, doctor_id: str) -> Optional[DoctorProfile]:
        with self.session_factory() as session:
            return self.find(session, doctor_id)

    def require(self, doctor_id: str) -> DoctorProfile:
        profile = self.get(doctor_id)
        if profile is None:
            raise NotFoundError("Doctor", doctor_id)
        return profile

    @guard_persistence
    def list(self):
        with self.session_factory() as session:
            return session.exec(select(DoctorProfile).order_by(DoctorProfile.doctor_id)).all()

    @guard_persistence
    def upsert(self, doctor_id: str, working_hours=None, availability_status=None,
               name: str = None, specialty: str = None) -> DoctorProfile:
        with self.session_factory() as session:
            profile = self.find(session, doctor_id) or DoctorProfile(doctor_id=doctor_id)
            if working_hours is not None:
                # Stored in one canonical shape whatever the client sent
                profile.working_hours = dump_working_hours(normalize_working_hours(working_hours))
            if availability_status is not None:
                profile.availability_status = AvailabilityStatus(availability_status)
            if name is not None:
                profile.name = name
            if specialty is not None:
                profile.specialty = specialty
            profile.updated_at = utcnow()
            session.add(profile)
            session.commit()
            session.refresh(profile)
            logger.info(f"Updated availability profile for doctor {doctor_id}")
            return profile

    def set_status(self, doctor_id: str, status) -> DoctorProfile:
        self.require(doctor_id)
        return self.upsert(doctor_id, availability_status=status)

    def set_working_hours(self, doctor_id: str, working_hours) -> DoctorProfile:
        return self.upsert(doctor_id, working_hours=working_hours)


def profile_read(profile: DoctorProfile) -> DoctorProfileRead:
    """Public view of a profile, with the stored hours expanded per weekday."""
    hours = normalize_working_hours(profile.working_hours)
    return DoctorProfileRead.model_validate(
        profile, update={"working_hours": {day: window.to_dict() for day, window in hours.items()}}
    )
