import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

from app.config import BOOKING_HORIZON_DAYS
from app.exceptions import (
    DoctorUnavailableError,
    NoWorkingHoursError,
    NotFoundError,
    PastDateError,
    SchedulingError,
    TooFarAheadError,
)
from app.models import AvailabilityStatus, DoctorProfile
from app.utils.helpers import WorkingWindow, clinic_now, normalize_working_hours, weekday_name


logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    AvailabilityStatus.BUSY: "The doctor is busy and not accepting appointments right now",
    AvailabilityStatus.OFFLINE: "The doctor is offline and not accepting appointments",
}


@dataclass
class AvailabilityResult:
    ok: bool
    reason: Optional[str] = None
    kind: Optional[str] = None
    window: Optional[WorkingWindow] = None


class AvailabilityCalculator:
    """Decides whether a doctor takes bookings on a calendar day.

    Availability is day scoped: patients are served in queue order within the
    day, so only the date is checked against working hours.
    """

    def __init__(self, horizon_days: int = BOOKING_HORIZON_DAYS, clock: Callable = clinic_now):
        self.horizon_days = horizon_days
        self.clock = clock

    def today(self) -> date:
        return self.clock().date()

    def check(self, doctor_id: str, day: date, profile: Optional[DoctorProfile]) -> WorkingWindow:
        """Return the working window for ``day`` or raise why it is closed."""
        if profile is None:
            raise NotFoundError("Doctor", doctor_id)

        today = self.today()
        if day < today:
            raise PastDateError(day)
        if day > today + timedelta(days=self.horizon_days):
            raise TooFarAheadError(day, self.horizon_days)

        status = AvailabilityStatus(profile.availability_status)
        if status != AvailabilityStatus.AVAILABLE:
            raise DoctorUnavailableError(doctor_id, STATUS_MESSAGES.get(status))

        window = self.working_window(profile, day)
        if window is None:
            raise NoWorkingHoursError(doctor_id, weekday_name(day))
        return window

    def is_available(self, doctor_id: str, day: date, profile: Optional[DoctorProfile]) -> AvailabilityResult:
        try:
            window = self.check(doctor_id, day, profile)
        except NotFoundError:
            raise
        except SchedulingError as e:
            logger.info(f"Doctor {doctor_id} closed on {day}: {e.kind}")
            return AvailabilityResult(ok=False, reason=e.message, kind=e.kind)
        return AvailabilityResult(ok=True, window=window)

    @staticmethod
    def working_window(profile: DoctorProfile, day: date) -> Optional[WorkingWindow]:
        return normalize_working_hours(profile.working_hours).get(weekday_name(day))
