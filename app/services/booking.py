import hashlib
import logging
from datetime import date, timedelta
from typing import Optional

from sqlmodel import SQLModel

from app.config import IDEMPOTENCY_WINDOW_SECONDS
from app.db import get_session, guard_persistence
from app.exceptions import NotFoundError, PartitionLockTimeout, ValidationError
from app.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    IdempotencyRecord,
    Priority,
    as_utc,
    utcnow,
)
from app.services.availability import AvailabilityCalculator
from app.services.events import AppointmentBooked, EventBus
from app.services.lifecycle import AppointmentLifecycle
from app.services.profiles import DoctorProfileStore
from app.services.queue_ledger import QueueLedger
from app.utils.helpers import parse_date_str, parse_time_str


logger = logging.getLogger(__name__)


class BookingResult(SQLModel):
    appointment_id: int
    queue_number: str
    status: AppointmentStatus
    doctor_id: str
    appointment_date: date
    is_emergency: bool
    replayed: bool = False

    @classmethod
    def from_appointment(cls, appointment: Appointment, replayed: bool = False) -> "BookingResult":
        return cls.model_validate(appointment, update={"appointment_id": appointment.id, "replayed": replayed})


def make_idempotency_key(patient_id: str, doctor_id: str, day: date, nonce: str) -> str:
    raw = f"{patient_id}|{doctor_id}|{day.isoformat()}|{nonce}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class BookingOrchestrator:
    """Entry point for a patient (or front desk) booking a queue appointment."""

    def __init__(self, availability: AvailabilityCalculator, ledger: QueueLedger,
                 lifecycle: AppointmentLifecycle, profiles: DoctorProfileStore,
                 session_factory=get_session, events: EventBus = None,
                 idempotency_window_seconds: int = IDEMPOTENCY_WINDOW_SECONDS):
        self.availability = availability
        self.ledger = ledger
        self.lifecycle = lifecycle
        self.profiles = profiles
        self.session_factory = session_factory
        self.events = events or lifecycle.events
        self.idempotency_window = timedelta(seconds=idempotency_window_seconds)

    def book(self, patient_id: str, doctor_id: str, appointment_date, appointment_type=AppointmentType.CONSULTATION,
             reason_for_visit: str = None, symptoms: str = None, is_emergency: bool = False,
             priority=None, appointment_time=None, idempotency_key: str = None,
             actor_id: str = None) -> BookingResult:
        if not patient_id:
            raise ValidationError("A patient is required")
        if not doctor_id:
            raise ValidationError("Please select a doctor")
        if not reason_for_visit or not reason_for_visit.strip():
            raise ValidationError("Please provide a reason for your visit")
        day = parse_date_str(appointment_date)
        try:
            appointment_type = AppointmentType(appointment_type)
            priority = Priority(priority) if priority else Priority.LOW
        except ValueError as e:
            raise ValidationError(str(e))
        if appointment_time is not None:
            appointment_time = parse_time_str(appointment_time)

        key = make_idempotency_key(patient_id, doctor_id, day, idempotency_key) if idempotency_key else None
        if key:
            replay = self._replay(key)
            if replay is not None:
                logger.info(f"Replaying booking {replay.appointment_id} for repeated request")
                return replay

        profile = self.profiles.get(doctor_id)
        window = self.availability.check(doctor_id, day, profile)
        if appointment_time is not None and not window.contains(appointment_time):
            raise ValidationError(
                f"Please choose a time between {window.start:%H:%M} and {window.end:%H:%M}"
            )

        booking = dict(
            patient_id=patient_id,
            doctor_id=doctor_id,
            day=day,
            appointment_type=appointment_type,
            reason_for_visit=reason_for_visit.strip(),
            symptoms=symptoms,
            is_emergency=is_emergency,
            priority=priority,
            appointment_time=appointment_time,
            key=key,
            actor_id=actor_id,
        )
        try:
            result = self._allocate_and_create(**booking)
        except PartitionLockTimeout:
            logger.warning(f"Queue for doctor {doctor_id} on {day} busy, retrying booking once")
            result = self._allocate_and_create(**booking)

        if not result.replayed:
            logger.info(
                f"Booked appointment {result.appointment_id} for patient {patient_id} with doctor "
                f"{doctor_id} on {day}: queue number {result.queue_number}"
            )
            self.events.publish(AppointmentBooked(
                appointment_id=result.appointment_id,
                patient_id=patient_id,
                doctor_id=doctor_id,
                appointment_date=day,
                queue_number=result.queue_number,
                is_emergency=is_emergency,
            ))
        return result

    @guard_persistence
    def _allocate_and_create(self, *, patient_id, doctor_id, day, appointment_type, reason_for_visit,
                             symptoms, is_emergency, priority, appointment_time, key, actor_id) -> BookingResult:
        with self.ledger.partition_lock(doctor_id, day):
            with self.session_factory() as session:
                if key:
                    # Same key means same (doctor, day), so this check is serialized too
                    record = session.get(IdempotencyRecord, key)
                    if record is not None:
                        if not self._expired(record):
                            appointment = session.get(Appointment, record.appointment_id)
                            return BookingResult.from_appointment(appointment, replayed=True)
                        session.delete(record)
                        session.flush()

                entry = self.ledger.allocate_in(session, doctor_id, day, is_emergency)
                appointment = self.lifecycle.create_in(
                    session,
                    patient_id=patient_id,
                    doctor_id=doctor_id,
                    appointment_date=day,
                    appointment_type=appointment_type,
                    reason_for_visit=reason_for_visit,
                    entry=entry,
                    symptoms=symptoms,
                    priority=priority,
                    appointment_time=appointment_time,
                    actor_id=actor_id,
                )
                if key:
                    session.add(IdempotencyRecord(key=key, appointment_id=appointment.id))
                session.commit()
                session.refresh(appointment)
                return BookingResult.from_appointment(appointment)

    def _expired(self, record: IdempotencyRecord) -> bool:
        return utcnow() - as_utc(record.created_at) > self.idempotency_window

    @guard_persistence
    def _replay(self, key: str) -> Optional[BookingResult]:
        with self.session_factory() as session:
            record = session.get(IdempotencyRecord, key)
            if record is None or self._expired(record):
                return None
            appointment = session.get(Appointment, record.appointment_id)
            if appointment is None:
                return None
            return BookingResult.from_appointment(appointment, replayed=True)

    def available_slots(self, doctor_id: str, day) -> dict:
        """Whether the day is open for booking and how long the queue is.

        The queue is day scoped, so there are no discrete time slots.
        """
        day = parse_date_str(day)
        profile = self.profiles.get(doctor_id)
        if profile is None:
            raise NotFoundError("Doctor", doctor_id)
        result = self.availability.is_available(doctor_id, day, profile)
        window = self.availability.working_window(profile, day)
        is_open = result.ok and self.ledger.is_active(doctor_id, day)
        reason = result.reason
        kind = result.kind
        if result.ok and not is_open:
            reason = "The doctor has closed the queue for this day"
            kind = "doctor_unavailable"
        return {
            "doctor_id": doctor_id,
            "date": day,
            "is_open": is_open,
            "working_window": window.to_dict() if window else None,
            "queue_length": self.ledger.queue_length(doctor_id, day),
            "reason": reason,
            "kind": kind,
        }
