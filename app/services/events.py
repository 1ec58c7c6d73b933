"""
Appointment domain events.

The notification collaborator (email/SMS) is not part of this service; it
subscribes to these events on the bus.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, fields
from datetime import date, datetime, time, timezone
from typing import Callable, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class AppointmentEvent:
    appointment_id: int
    patient_id: str
    doctor_id: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        result = {"event_type": self.event_type}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (date, datetime, time)):
                value = value.isoformat()
            result[f.name] = value
        return result


@dataclass(frozen=True, kw_only=True)
class AppointmentBooked(AppointmentEvent):
    appointment_date: date
    queue_number: str
    is_emergency: bool = False


@dataclass(frozen=True, kw_only=True)
class AppointmentStatusChanged(AppointmentEvent):
    from_status: str
    to_status: str
    notes: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class AppointmentRescheduled(AppointmentEvent):
    old_date: date
    new_date: date
    old_queue_number: Optional[str] = None
    new_queue_number: Optional[str] = None
    new_time: Optional[time] = None


@dataclass(frozen=True, kw_only=True)
class AppointmentCancelled(AppointmentEvent):
    reason: Optional[str] = None


EventHandler = Callable[[AppointmentEvent], None]

ALL_EVENTS = "*"


class EventBus:
    """In-process publisher; a failing handler never fails the request."""

    def __init__(self):
        self._handlers = defaultdict(list)

    def subscribe(self, event_type, handler: EventHandler) -> None:
        name = event_type if isinstance(event_type, str) else event_type.__name__
        self._handlers[name].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self.subscribe(ALL_EVENTS, handler)

    def publish(self, event: AppointmentEvent) -> None:
        for handler in self._handlers.get(event.event_type, []) + self._handlers.get(ALL_EVENTS, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event.event_type}: {e}")

    def clear(self) -> None:
        self._handlers.clear()


def log_event(event: AppointmentEvent) -> None:
    logger.info(f"{event.event_type}: appointment {event.appointment_id} (doctor {event.doctor_id})")
