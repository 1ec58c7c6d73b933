import logging
from datetime import date, time
from typing import Optional

from sqlmodel import SQLModel

from app.db import get_session, guard_persistence
from app.exceptions import IllegalTransitionError, NoChangeError, PastDateError, ValidationError
from app.models import Appointment, AppointmentHistory, AppointmentStatus, EntryState, QueueEntry, utcnow
from app.services.availability import AvailabilityCalculator
from app.services.events import AppointmentRescheduled, AppointmentStatusChanged, EventBus
from app.services.lifecycle import AppointmentLifecycle
from app.services.profiles import DoctorProfileStore
from app.services.queue_ledger import QueueLedger
from app.utils.helpers import parse_date_str, parse_time_str


logger = logging.getLogger(__name__)

RESCHEDULABLE = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


class RescheduleResult(SQLModel):
    appointment_id: int
    status: AppointmentStatus
    appointment_date: date
    appointment_time: Optional[time] = None
    old_queue_number: Optional[str] = None
    new_queue_number: Optional[str] = None

    @classmethod
    def from_appointment(cls, appointment: Appointment, old_queue_number: Optional[str]) -> "RescheduleResult":
        return cls.model_validate(appointment, update={
            "appointment_id": appointment.id,
            "old_queue_number": old_queue_number,
            "new_queue_number": appointment.queue_number,
        })


class RescheduleHandler:
    def __init__(self, availability: AvailabilityCalculator, ledger: QueueLedger,
                 lifecycle: AppointmentLifecycle, profiles: DoctorProfileStore,
                 session_factory=get_session, events: EventBus = None):
        self.availability = availability
        self.ledger = ledger
        self.lifecycle = lifecycle
        self.profiles = profiles
        self.session_factory = session_factory
        self.events = events or lifecycle.events

    @guard_persistence
    def reschedule(self, appointment_id: int, new_date, new_time=None, actor_id: str = None) -> RescheduleResult:
        """Move an appointment to another day (or time on the same day).

        The old queue entry is flagged as moved, never renumbered; a different
        day gets a fresh number in the same lane.
        """
        new_date = parse_date_str(new_date)
        new_time = parse_time_str(new_time) if new_time else None

        with self.lifecycle.appointment_lock(appointment_id):
            with self.session_factory() as session:
                appointment = self.lifecycle.load_for_update(session, appointment_id)
                status = AppointmentStatus(appointment.status)
                if status not in RESCHEDULABLE:
                    raise IllegalTransitionError(status.value, "rescheduled")

                old_date = appointment.appointment_date
                same_day = new_date == old_date
                if same_day and (new_time is None or new_time == appointment.appointment_time):
                    raise NoChangeError()
                if new_date <= self.availability.today():
                    raise PastDateError(new_date, "Please select a future date and time")

                profile = self.profiles.find(session, appointment.doctor_id)
                window = self.availability.check(appointment.doctor_id, new_date, profile)
                if new_time is not None and not window.contains(new_time):
                    raise ValidationError(
                        f"Please choose a time between {window.start:%H:%M} and {window.end:%H:%M}"
                    )

                old_queue_number = appointment.queue_number
                keys = [
                    self.ledger.partition_key(appointment.doctor_id, old_date),
                    self.ledger.partition_key(appointment.doctor_id, new_date),
                ]
                with self.ledger.locks.hold_many(keys):
                    if not same_day:
                        old_entry = (
                            session.get(QueueEntry, appointment.queue_entry_id)
                            if appointment.queue_entry_id else None
                        )
                        new_entry = self.ledger.allocate_in(
                            session, appointment.doctor_id, new_date, appointment.is_emergency,
                            appointment_id=appointment.id,
                        )
                        if old_entry is not None:
                            self.ledger.release_in(session, old_entry, EntryState.MOVED)
                        appointment.queue_entry_id = new_entry.id
                        appointment.queue_number = new_entry.queue_number

                    appointment.appointment_date = new_date
                    appointment.appointment_time = new_time
                    if status == AppointmentStatus.CONFIRMED:
                        # The doctor has to accept the new day again
                        appointment.status = AppointmentStatus.SCHEDULED
                    appointment.version += 1
                    appointment.updated_at = utcnow()
                    session.add(appointment)
                    session.add(AppointmentHistory(
                        appointment_id=appointment.id,
                        event="rescheduled",
                        from_status=status.value,
                        to_status=AppointmentStatus(appointment.status).value,
                        actor_id=actor_id,
                        notes=f"{old_date.isoformat()} ({old_queue_number}) -> "
                              f"{new_date.isoformat()} ({appointment.queue_number})",
                    ))
                    session.commit()
                session.refresh(appointment)

        logger.info(
            f"Rescheduled appointment {appointment_id} from {old_date} ({old_queue_number}) "
            f"to {new_date} ({appointment.queue_number})"
        )
        self.events.publish(AppointmentRescheduled(
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            old_date=old_date,
            new_date=new_date,
            old_queue_number=old_queue_number,
            new_queue_number=appointment.queue_number,
            new_time=new_time,
        ))
        if status == AppointmentStatus.CONFIRMED:
            self.events.publish(AppointmentStatusChanged(
                appointment_id=appointment.id,
                patient_id=appointment.patient_id,
                doctor_id=appointment.doctor_id,
                from_status=status.value,
                to_status=AppointmentStatus.SCHEDULED.value,
                notes="Rescheduled, awaiting confirmation",
            ))
        return RescheduleResult.from_appointment(appointment, old_queue_number)

    def cancel(self, appointment_id: int, reason: str = None, actor_id: str = None) -> Appointment:
        appointment = self.lifecycle.transition(
            appointment_id, AppointmentStatus.CANCELLED, reason=reason, actor_id=actor_id
        )
        logger.info(f"Cancelled appointment {appointment_id}: {reason or 'no reason given'}")
        return appointment
