from functools import lru_cache
from typing import Callable

from app.config import (
    AVERAGE_CONSULTATION_MINUTES,
    BOOKING_HORIZON_DAYS,
    IDEMPOTENCY_WINDOW_SECONDS,
    LOCK_TIMEOUT_SECONDS,
    MAX_EMERGENCY_SLOTS,
)
from app.db import get_session
from app.services.availability import AvailabilityCalculator
from app.services.booking import BookingOrchestrator
from app.services.events import EventBus, log_event
from app.services.lifecycle import AppointmentLifecycle
from app.services.locks import KeyedLocks
from app.services.profiles import DoctorProfileStore
from app.services.queue_ledger import QueueLedger
from app.services.reschedule import RescheduleHandler
from app.utils.helpers import clinic_now


class SchedulingServices:
    """All scheduling components sharing one lock registry and event bus."""

    def __init__(self, session_factory=get_session, clock: Callable = clinic_now,
                 horizon_days: int = BOOKING_HORIZON_DAYS,
                 lock_timeout: float = LOCK_TIMEOUT_SECONDS,
                 max_emergency_slots: int = MAX_EMERGENCY_SLOTS,
                 idempotency_window_seconds: int = IDEMPOTENCY_WINDOW_SECONDS,
                 average_consultation_minutes: int = AVERAGE_CONSULTATION_MINUTES,
                 events: EventBus = None):
        self.session_factory = session_factory
        self.events = events or EventBus()
        self.locks = KeyedLocks(lock_timeout)
        self.profiles = DoctorProfileStore(session_factory)
        self.availability = AvailabilityCalculator(horizon_days, clock)
        self.ledger = QueueLedger(
            session_factory,
            self.locks,
            max_emergency_slots=max_emergency_slots,
            average_consultation_minutes=average_consultation_minutes,
        )
        self.lifecycle = AppointmentLifecycle(self.ledger, session_factory, self.locks, self.events)
        self.booking = BookingOrchestrator(
            self.availability,
            self.ledger,
            self.lifecycle,
            self.profiles,
            session_factory,
            self.events,
            idempotency_window_seconds=idempotency_window_seconds,
        )
        self.reschedule = RescheduleHandler(
            self.availability, self.ledger, self.lifecycle, self.profiles, session_factory, self.events
        )

    def today(self):
        return self.availability.today()


@lru_cache(maxsize=1)
def get_services() -> SchedulingServices:
    services = SchedulingServices()
    # Stand-in for the notification collaborator
    services.events.subscribe_all(log_event)
    return services
