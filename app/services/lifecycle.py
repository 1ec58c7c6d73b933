"""
Appointment lifecycle.

    scheduled -> confirmed -> in-progress -> completed
    scheduled | confirmed -> cancelled
    scheduled | confirmed -> no-show

completed, cancelled and no-show are terminal. Every entry point (status
update, doctor action buttons, call next, cancel) goes through
``validate_transition`` so illegal changes are rejected the same way
everywhere.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlmodel import col, select

from app.db import get_session, guard_persistence
from app.exceptions import IllegalTransitionError, NotFoundError, ValidationError
from app.models import (
    Appointment,
    AppointmentHistory,
    AppointmentStatus,
    AppointmentType,
    EntryState,
    Priority,
    QueueEntry,
    utcnow,
)
from app.services.events import AppointmentCancelled, AppointmentStatusChanged, EventBus
from app.services.locks import KeyedLocks
from app.services.queue_ledger import QueueLedger


logger = logging.getLogger(__name__)

TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Doctor dashboard buttons
ACTIONS = {
    "accept": AppointmentStatus.CONFIRMED,
    "confirm": AppointmentStatus.CONFIRMED,
    "start": AppointmentStatus.IN_PROGRESS,
    "complete": AppointmentStatus.COMPLETED,
    "cancel": AppointmentStatus.CANCELLED,
    "no-show": AppointmentStatus.NO_SHOW,
}

_ENTRY_STATES = {
    AppointmentStatus.CANCELLED: EntryState.CANCELLED,
    AppointmentStatus.NO_SHOW: EntryState.NO_SHOW,
}


def coerce_status(value) -> AppointmentStatus:
    if isinstance(value, AppointmentStatus):
        return value
    text = str(value).strip().lower().replace("_", "-")
    if text == "noshow":
        text = "no-show"
    try:
        return AppointmentStatus(text)
    except ValueError:
        raise ValidationError(f"Unknown appointment status: {value!r}")


def validate_transition(current, requested) -> AppointmentStatus:
    current = coerce_status(current)
    requested = coerce_status(requested)
    if requested not in TRANSITIONS[current]:
        raise IllegalTransitionError(current.value, requested.value)
    return requested


def can_transition(current, requested) -> bool:
    try:
        validate_transition(current, requested)
    except IllegalTransitionError:
        return False
    return True


class AppointmentLifecycle:
    def __init__(self, ledger: QueueLedger, session_factory=get_session, locks: KeyedLocks = None,
                 events: EventBus = None):
        self.ledger = ledger
        self.session_factory = session_factory
        self.locks = locks or ledger.locks
        self.events = events or EventBus()

    @staticmethod
    def appointment_key(appointment_id: int) -> str:
        return f"appointment:{appointment_id}"

    def appointment_lock(self, appointment_id: int):
        return self.locks.hold(self.appointment_key(appointment_id))

    # -- creation --------------------------------------------------------

    def create_in(self, session, *, patient_id: str, doctor_id: str, appointment_date: date,
                  appointment_type: AppointmentType, reason_for_visit: str, entry: QueueEntry,
                  symptoms: str = None, priority: Priority = Priority.LOW, appointment_time=None,
                  actor_id: str = None) -> Appointment:
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            appointment_type=appointment_type,
            reason_for_visit=reason_for_visit,
            symptoms=symptoms,
            priority=priority,
            is_emergency=entry.is_emergency,
            status=AppointmentStatus.SCHEDULED,
            queue_entry_id=entry.id,
            queue_number=entry.queue_number,
        )
        session.add(appointment)
        session.flush()
        entry.appointment_id = appointment.id
        session.add(entry)
        session.add(AppointmentHistory(
            appointment_id=appointment.id,
            event="booked",
            to_status=AppointmentStatus.SCHEDULED.value,
            actor_id=actor_id or patient_id,
            notes=f"queue number {entry.queue_number} on {appointment_date.isoformat()}",
        ))
        return appointment

    # -- reads -----------------------------------------------------------

    @staticmethod
    def load_for_update(session, appointment_id: int) -> Appointment:
        appointment = session.get(Appointment, appointment_id, with_for_update=True)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    @guard_persistence
    def get(self, appointment_id: int) -> Appointment:
        with self.session_factory() as session:
            appointment = session.get(Appointment, appointment_id)
            if appointment is None:
                raise NotFoundError("Appointment", appointment_id)
            return appointment

    @guard_persistence
    def list(self, patient_id: str = None, doctor_id: str = None, appointment_date: date = None,
             statuses: Optional[List[AppointmentStatus]] = None) -> List[Appointment]:
        with self.session_factory() as session:
            stmt = select(Appointment)
            if patient_id is not None:
                stmt = stmt.where(Appointment.patient_id == patient_id)
            if doctor_id is not None:
                stmt = stmt.where(Appointment.doctor_id == doctor_id)
            if appointment_date is not None:
                stmt = stmt.where(Appointment.appointment_date == appointment_date)
            if statuses:
                stmt = stmt.where(col(Appointment.status).in_(statuses))
            stmt = stmt.order_by(col(Appointment.appointment_date), col(Appointment.id))
            return session.exec(stmt).all()

    @guard_persistence
    def history(self, appointment_id: int) -> List[AppointmentHistory]:
        with self.session_factory() as session:
            stmt = (
                select(AppointmentHistory)
                .where(AppointmentHistory.appointment_id == appointment_id)
                .order_by(col(AppointmentHistory.id))
            )
            return session.exec(stmt).all()

    # -- transitions -----------------------------------------------------

    def apply_in(self, session, appointment: Appointment, requested: AppointmentStatus,
                 notes: str = None, reason: str = None, actor_id: str = None) -> AppointmentStatus:
        """Apply a validated transition and its queue side effects.

        The caller holds the appointment lock and the partition lock.
        """
        previous = AppointmentStatus(appointment.status)
        validate_transition(previous, requested)

        entry = session.get(QueueEntry, appointment.queue_entry_id) if appointment.queue_entry_id else None
        if entry is not None:
            if requested == AppointmentStatus.IN_PROGRESS:
                self.ledger.start_serving_in(session, entry)
            elif requested == AppointmentStatus.COMPLETED:
                self.ledger.mark_served_in(session, entry)
            elif requested in _ENTRY_STATES:
                self.ledger.release_in(session, entry, _ENTRY_STATES[requested])

        appointment.status = requested
        if notes:
            appointment.notes = notes
        if requested == AppointmentStatus.CANCELLED:
            appointment.cancellation_reason = reason or notes
        appointment.version += 1
        appointment.updated_at = utcnow()
        session.add(appointment)
        session.add(AppointmentHistory(
            appointment_id=appointment.id,
            event="status_change",
            from_status=previous.value,
            to_status=requested.value,
            actor_id=actor_id,
            notes=reason or notes,
        ))
        return previous

    def transition(self, appointment_id: int, new_status, notes: str = None, reason: str = None,
                   actor_id: str = None) -> Appointment:
        return self._run(appointment_id, [coerce_status(new_status)], notes, reason, actor_id)

    @guard_persistence
    def _run(self, appointment_id: int, steps: List[AppointmentStatus], notes: str = None,
             reason: str = None, actor_id: str = None, confirm_first: bool = False) -> Appointment:
        """Apply one or more transitions under a single lock acquisition and commit."""
        changes = []
        with self.appointment_lock(appointment_id):
            with self.session_factory() as session:
                appointment = self.load_for_update(session, appointment_id)
                if confirm_first and appointment.status == AppointmentStatus.SCHEDULED:
                    steps = [AppointmentStatus.CONFIRMED] + steps
                # Fail fast before touching the queue partition
                validate_transition(appointment.status, steps[0])
                with self.ledger.partition_lock(appointment.doctor_id, appointment.appointment_date):
                    for requested in steps:
                        previous = self.apply_in(session, appointment, requested, notes, reason, actor_id)
                        changes.append((previous, requested))
                    session.commit()
                session.refresh(appointment)

        for previous, requested in changes:
            logger.info(f"Appointment {appointment_id}: {previous.value} -> {requested.value}")
            self.events.publish(AppointmentStatusChanged(
                appointment_id=appointment.id,
                patient_id=appointment.patient_id,
                doctor_id=appointment.doctor_id,
                from_status=previous.value,
                to_status=requested.value,
                notes=notes,
            ))
        if steps[-1] == AppointmentStatus.CANCELLED:
            self.events.publish(AppointmentCancelled(
                appointment_id=appointment.id,
                patient_id=appointment.patient_id,
                doctor_id=appointment.doctor_id,
                reason=appointment.cancellation_reason,
            ))
        return appointment

    def perform_action(self, appointment_id: int, action: str, notes: str = None,
                       actor_id: str = None) -> Appointment:
        key = str(action).strip().lower().replace("_", "-")
        if key not in ACTIONS:
            raise ValidationError(f"Unknown action: {action!r}")
        return self.transition(appointment_id, ACTIONS[key], notes=notes, actor_id=actor_id)

    def start_consultation(self, appointment_id: int, actor_id: str = None) -> Appointment:
        """Call a patient in; a scheduled appointment is confirmed first."""
        return self._run(appointment_id, [AppointmentStatus.IN_PROGRESS], actor_id=actor_id, confirm_first=True)

    def call_next(self, doctor_id: str, day: date, actor_id: str = None) -> Optional[Appointment]:
        """Start the next appointment in serving order, or None if nobody waits.

        Refused while another patient of the same queue is still in consultation.
        """
        entry = self.ledger.peek_next(doctor_id, day)
        if entry is None or entry.appointment_id is None:
            return None
        return self.start_consultation(entry.appointment_id, actor_id=actor_id)

    @guard_persistence
    def mark_served(self, doctor_id: str, day: date, queue_number, actor_id: str = None) -> Appointment:
        """Complete the appointment holding ``queue_number`` on that day's queue."""
        with self.session_factory() as session:
            entry = self.ledger.find_entry(session, doctor_id, day, queue_number)
            appointment_id = entry.appointment_id
        if appointment_id is None:
            raise NotFoundError("Appointment for queue number", queue_number)
        return self.transition(appointment_id, AppointmentStatus.COMPLETED, actor_id=actor_id)
