"""
Queue Ledger: the ordered list of queue entries for each (doctor, day).

Numbering and serving order are separate concerns:

* numbering: two independent lanes per partition, regular (1, 2, 3 ...) and
  emergency (E1, E2 ...). A number is handed out once, in creation order,
  and never reused or shifted. Cancelled and moved entries keep theirs.
* serving order: the lowest waiting emergency entry goes first, then the
  lowest waiting regular entry, whatever the arrival time.

Every allocation for a partition runs under that partition's keyed lock and
inside one transaction that row-locks the partition counter, so the Nth
successful allocation in a lane gets number N.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlmodel import col, func, select

from app.config import AVERAGE_CONSULTATION_MINUTES, MAX_EMERGENCY_SLOTS
from app.db import get_session, guard_persistence
from app.exceptions import (
    DoctorUnavailableError,
    EmergencyLaneFullError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import EMERGENCY_PREFIX, EntryState, QueueEntry, QueuePartition, format_queue_number, utcnow
from app.services.locks import KeyedLocks


logger = logging.getLogger(__name__)

OPEN_STATES = (EntryState.WAITING, EntryState.SERVING)


def parse_queue_number(queue_number) -> tuple:
    """"E3" -> (True, 3); "3" or 3 -> (False, 3)."""
    text = str(queue_number).strip().upper()
    is_emergency = text.startswith(EMERGENCY_PREFIX)
    digits = text[len(EMERGENCY_PREFIX):] if is_emergency else text
    if not digits.isdigit() or int(digits) < 1:
        raise ValidationError(f"Invalid queue number: {queue_number!r}")
    return is_emergency, int(digits)


class QueueLedger:
    def __init__(self, session_factory=get_session, locks: KeyedLocks = None,
                 max_emergency_slots: int = MAX_EMERGENCY_SLOTS,
                 average_consultation_minutes: int = AVERAGE_CONSULTATION_MINUTES):
        self.session_factory = session_factory
        self.locks = locks or KeyedLocks()
        self.max_emergency_slots = max_emergency_slots
        self.average_consultation_minutes = average_consultation_minutes

    @staticmethod
    def partition_key(doctor_id: str, day: date) -> str:
        return f"partition:{doctor_id}:{day.isoformat()}"

    def partition_lock(self, doctor_id: str, day: date):
        return self.locks.hold(self.partition_key(doctor_id, day))

    # -- partition rows --------------------------------------------------

    def get_partition(self, session, doctor_id: str, day: date, for_update: bool = False,
                      create: bool = False) -> Optional[QueuePartition]:
        stmt = select(QueuePartition).where(
            QueuePartition.doctor_id == doctor_id, QueuePartition.queue_date == day
        )
        if for_update:
            stmt = stmt.with_for_update()
        partition = session.exec(stmt).first()
        if partition is None and create:
            partition = QueuePartition(
                doctor_id=doctor_id, queue_date=day, max_emergency_slots=self.max_emergency_slots
            )
            session.add(partition)
            session.flush()
        return partition

    # -- allocation ------------------------------------------------------

    def allocate_in(self, session, doctor_id: str, day: date, is_emergency: bool,
                    appointment_id: int = None) -> QueueEntry:
        """Allocate the next number in a lane inside the caller's transaction.

        The caller holds ``partition_lock(doctor_id, day)`` and commits; if it
        rolls back instead, the number was never handed out.
        """
        partition = self.get_partition(session, doctor_id, day, for_update=True, create=True)
        if not partition.is_active:
            raise DoctorUnavailableError(doctor_id, "The doctor has closed the queue for this day")

        if is_emergency:
            if partition.max_emergency_slots and partition.emergency_count >= partition.max_emergency_slots:
                raise EmergencyLaneFullError(partition.max_emergency_slots)
            partition.emergency_count += 1
            lane_number = partition.emergency_count
        else:
            partition.regular_count += 1
            lane_number = partition.regular_count
        partition.sequence += 1
        partition.updated_at = utcnow()

        entry = QueueEntry(
            doctor_id=doctor_id,
            queue_date=day,
            lane_number=lane_number,
            is_emergency=is_emergency,
            sequence=partition.sequence,
            appointment_id=appointment_id,
        )
        session.add(partition)
        session.add(entry)
        session.flush()

        self._advance(session, partition)
        logger.info(f"Allocated queue number {entry.queue_number} for doctor {doctor_id} on {day}")
        return entry

    @guard_persistence
    def allocate(self, doctor_id: str, day: date, is_emergency: bool = False) -> QueueEntry:
        with self.partition_lock(doctor_id, day):
            with self.session_factory() as session:
                entry = self.allocate_in(session, doctor_id, day, is_emergency)
                session.commit()
                session.refresh(entry)
                return entry

    # -- serving order ---------------------------------------------------

    @staticmethod
    def _serving_order():
        # True sorts after False, so descending puts the emergency lane first
        return col(QueueEntry.is_emergency).desc(), col(QueueEntry.lane_number)

    def next_waiting(self, session, doctor_id: str, day: date) -> Optional[QueueEntry]:
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.doctor_id == doctor_id,
                QueueEntry.queue_date == day,
                QueueEntry.state == EntryState.WAITING,
            )
            .order_by(*self._serving_order())
        )
        return session.exec(stmt).first()

    def _currently_serving(self, session, doctor_id: str, day: date) -> Optional[QueueEntry]:
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.doctor_id == doctor_id,
                QueueEntry.queue_date == day,
                QueueEntry.state == EntryState.SERVING,
            )
            .order_by(col(QueueEntry.sequence))
        )
        return session.exec(stmt).first()

    def _advance(self, session, partition: QueuePartition) -> Optional[QueueEntry]:
        # Stay on the patient being seen; otherwise point at the next one up
        target = self._currently_serving(session, partition.doctor_id, partition.queue_date)
        if target is None:
            target = self.next_waiting(session, partition.doctor_id, partition.queue_date)
        partition.serving_entry_id = target.id if target else None
        partition.updated_at = utcnow()
        session.add(partition)
        return target

    @guard_persistence
    def peek_next(self, doctor_id: str, day: date) -> Optional[QueueEntry]:
        with self.session_factory() as session:
            return self.next_waiting(session, doctor_id, day)

    # -- state changes (caller holds the partition lock) -----------------

    def start_serving_in(self, session, entry: QueueEntry) -> None:
        # One patient in consultation per doctor and day
        current = self._currently_serving(session, entry.doctor_id, entry.queue_date)
        if current is not None and current.id != entry.id:
            raise IllegalTransitionError(
                entry.state.value,
                EntryState.SERVING.value,
                f"Queue number {current.queue_number} is still in consultation, complete it first",
            )
        if entry.state != EntryState.WAITING:
            raise IllegalTransitionError(entry.state.value, EntryState.SERVING.value)
        partition = self.get_partition(session, entry.doctor_id, entry.queue_date, for_update=True, create=True)
        entry.state = EntryState.SERVING
        if entry.is_emergency:
            partition.current_emergency_number = entry.lane_number
        else:
            partition.current_number = entry.lane_number
        partition.serving_entry_id = entry.id
        partition.updated_at = utcnow()
        session.add(entry)
        session.add(partition)
        session.flush()

    def mark_served_in(self, session, entry: QueueEntry) -> Optional[QueueEntry]:
        if entry.state not in OPEN_STATES:
            raise IllegalTransitionError(entry.state.value, EntryState.SERVED.value)
        entry.state = EntryState.SERVED
        entry.served_at = utcnow()
        return self._close(session, entry)

    def release_in(self, session, entry: QueueEntry, state: EntryState) -> Optional[QueueEntry]:
        """Take an entry out of the queue without renumbering anything."""
        if state not in (EntryState.CANCELLED, EntryState.NO_SHOW, EntryState.MOVED):
            raise ValueError(f"Cannot release a queue entry into state {state}")
        entry.state = state
        return self._close(session, entry)

    def _close(self, session, entry: QueueEntry) -> Optional[QueueEntry]:
        entry.closed_at = utcnow()
        session.add(entry)
        session.flush()
        partition = self.get_partition(session, entry.doctor_id, entry.queue_date, for_update=True, create=True)
        target = self._advance(session, partition)
        session.flush()
        logger.info(
            f"Queue {entry.doctor_id}/{entry.queue_date}: {entry.queue_number} -> {entry.state.value}, "
            f"now serving {target.queue_number if target else 'nobody'}"
        )
        return target

    def find_entry(self, session, doctor_id: str, day: date, queue_number) -> QueueEntry:
        is_emergency, lane_number = parse_queue_number(queue_number)
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.queue_date == day,
            QueueEntry.is_emergency == is_emergency,
            QueueEntry.lane_number == lane_number,
        )
        entry = session.exec(stmt).first()
        if entry is None:
            raise NotFoundError("Queue number", format_queue_number(lane_number, is_emergency))
        return entry

    @guard_persistence
    def mark_served(self, doctor_id: str, day: date, queue_number) -> Optional[QueueEntry]:
        """Mark a queue number served and return the entry now being pointed at.

        Only for entries without an appointment; booked entries are completed
        through the appointment lifecycle so both records move together.
        """
        with self.partition_lock(doctor_id, day):
            with self.session_factory() as session:
                entry = self.find_entry(session, doctor_id, day, queue_number)
                if entry.appointment_id is not None:
                    raise ValidationError(
                        f"Queue number {entry.queue_number} belongs to appointment {entry.appointment_id}; "
                        f"complete the appointment instead"
                    )
                target = self.mark_served_in(session, entry)
                session.commit()
                if target is not None:
                    session.refresh(target)
                return target

    # -- queue views -----------------------------------------------------

    @guard_persistence
    def set_active(self, doctor_id: str, day: date, is_active: bool) -> dict:
        with self.partition_lock(doctor_id, day):
            with self.session_factory() as session:
                partition = self.get_partition(session, doctor_id, day, for_update=True, create=True)
                partition.is_active = is_active
                partition.updated_at = utcnow()
                session.add(partition)
                session.commit()
        logger.info(f"Queue for doctor {doctor_id} on {day} {'opened' if is_active else 'closed'}")
        return self.status(doctor_id, day)

    @guard_persistence
    def is_active(self, doctor_id: str, day: date) -> bool:
        with self.session_factory() as session:
            partition = self.get_partition(session, doctor_id, day)
            return partition is None or partition.is_active

    @guard_persistence
    def entries(self, doctor_id: str, day: date) -> List[QueueEntry]:
        with self.session_factory() as session:
            stmt = (
                select(QueueEntry)
                .where(QueueEntry.doctor_id == doctor_id, QueueEntry.queue_date == day)
                .order_by(col(QueueEntry.sequence))
            )
            return session.exec(stmt).all()

    def _count_open(self, session, doctor_id: str, day: date) -> int:
        stmt = select(func.count()).select_from(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.queue_date == day,
            col(QueueEntry.state).in_(OPEN_STATES),
        )
        return session.exec(stmt).one()

    @guard_persistence
    def queue_length(self, doctor_id: str, day: date) -> int:
        with self.session_factory() as session:
            return self._count_open(session, doctor_id, day)

    @guard_persistence
    def status(self, doctor_id: str, day: date) -> dict:
        with self.session_factory() as session:
            partition = self.get_partition(session, doctor_id, day)
            if partition is None:
                partition = QueuePartition(
                    doctor_id=doctor_id, queue_date=day, max_emergency_slots=self.max_emergency_slots
                )
            serving = session.get(QueueEntry, partition.serving_entry_id) if partition.serving_entry_id else None
            upcoming = self.next_waiting(session, doctor_id, day)
            waiting = session.exec(
                select(func.count()).select_from(QueueEntry).where(
                    QueueEntry.doctor_id == doctor_id,
                    QueueEntry.queue_date == day,
                    QueueEntry.state == EntryState.WAITING,
                )
            ).one()
            return {
                "doctor_id": doctor_id,
                "queue_date": day,
                "is_active": partition.is_active,
                "regular_count": partition.regular_count,
                "emergency_used": partition.emergency_count,
                "max_emergency_slots": partition.max_emergency_slots,
                "current_number": str(partition.current_number) if partition.current_number else None,
                "current_emergency_number": (
                    format_queue_number(partition.current_emergency_number, True)
                    if partition.current_emergency_number else None
                ),
                "serving_number": serving.queue_number if serving else None,
                "next_number": upcoming.queue_number if upcoming else None,
                "waiting_count": waiting,
            }

    def position_in(self, session, entry: QueueEntry) -> dict:
        ahead = 0
        if entry.state == EntryState.WAITING:
            # Everyone who will be called before this entry, plus whoever is being seen
            before = [
                QueueEntry.doctor_id == entry.doctor_id,
                QueueEntry.queue_date == entry.queue_date,
                QueueEntry.state == EntryState.WAITING,
            ]
            if entry.is_emergency:
                before += [QueueEntry.is_emergency == True, QueueEntry.lane_number < entry.lane_number]  # noqa: E712
                stmt = select(func.count()).select_from(QueueEntry).where(*before)
            else:
                stmt = select(func.count()).select_from(QueueEntry).where(
                    *before,
                    (QueueEntry.is_emergency == True)  # noqa: E712
                    | ((QueueEntry.is_emergency == False) & (QueueEntry.lane_number < entry.lane_number)),  # noqa: E712
                )
            ahead = session.exec(stmt).one()
            if self._currently_serving(session, entry.doctor_id, entry.queue_date) is not None:
                ahead += 1
        return {
            "queue_number": entry.queue_number,
            "is_emergency": entry.is_emergency,
            "state": entry.state,
            "queue_position": ahead + 1 if entry.state == EntryState.WAITING else 0,
            "patients_ahead": ahead,
            "estimated_wait_time": ahead * self.average_consultation_minutes,
        }

    @guard_persistence
    def position(self, entry_id: int) -> dict:
        with self.session_factory() as session:
            entry = session.get(QueueEntry, entry_id)
            if entry is None:
                raise NotFoundError("Queue entry", entry_id)
            return self.position_in(session, entry)
