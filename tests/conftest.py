"""
Shared pytest fixtures.

Every test gets its own SQLite file database and a clock frozen on Monday
2026-10-19 08:30 clinic time.
"""

import os
from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient

# Ensure the app never seeds the default database during tests
os.environ["SEED_DOCTORS"] = "false"

from app.db import build_engine, init_db, session_factory  # noqa: E402
from app.services.container import SchedulingServices, get_services  # noqa: E402


FIXED_NOW = datetime(2026, 10, 19, 8, 30)
TODAY = FIXED_NOW.date()
NEXT_MONDAY = date(2026, 10, 26)
NEXT_TUESDAY = date(2026, 10, 27)
NEXT_WEDNESDAY = date(2026, 10, 28)

DOCTOR_ID = "dr-house"

WORKING_HOURS = {
    "monday": {"start": "09:00", "end": "17:00"},
    "wednesday": {"startTime": "09:00", "endTime": "13:00"},
    "friday": "10:00-16:00",
}


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def make_services(engine):
    """Build services over the test database; keyword args override defaults."""
    def factory(**overrides):
        options = {
            "session_factory": session_factory(engine),
            "clock": lambda: FIXED_NOW,
            "lock_timeout": 30,
        }
        options.update(overrides)
        return SchedulingServices(**options)
    return factory


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def doctor(services):
    return services.profiles.upsert(DOCTOR_ID, working_hours=WORKING_HOURS, name="Dr. House")


@pytest.fixture
def events(services):
    received = []
    services.events.subscribe_all(received.append)
    return received


@pytest.fixture
def book(services, doctor):
    """Book with sensible defaults."""
    def _book(patient_id="patient-1", day=NEXT_MONDAY, **kwargs):
        kwargs.setdefault("reason_for_visit", "Persistent cough")
        return services.booking.book(patient_id=patient_id, doctor_id=DOCTOR_ID, appointment_date=day, **kwargs)
    return _book


@pytest.fixture
def client(services):
    from app.main import app

    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers(user_id: str, role: str) -> dict:
    return {"X-User-Id": user_id, "X-User-Role": role}


PATIENT = headers("patient-1", "patient")
OTHER_PATIENT = headers("patient-2", "patient")
DOCTOR = headers(DOCTOR_ID, "doctor")
OTHER_DOCTOR = headers("dr-wilson", "doctor")
ADMIN = headers("admin-1", "admin")
