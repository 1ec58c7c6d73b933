"""
Error taxonomy for queue booking and scheduling.

Every error carries a stable ``kind`` so the client can show a specific
message (past date vs. doctor offline vs. illegal status change) instead of
a blanket failure.
"""


class SchedulingError(Exception):
    """Base class for all errors surfaced to callers."""

    kind = "scheduling_error"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"status": "error", "error": self.kind, "message": self.message}


class ValidationError(SchedulingError):
    """Raised when a request is missing a required field or is malformed."""

    kind = "validation_error"


class PastDateError(SchedulingError):
    """Raised when the requested date is not in the future."""

    kind = "past_date"

    def __init__(self, requested_date=None, message: str = None):
        self.requested_date = requested_date
        super().__init__(message or "Please select a future date")


class TooFarAheadError(SchedulingError):
    """Raised when the requested date is beyond the booking horizon."""

    kind = "too_far_ahead"

    def __init__(self, requested_date=None, horizon_days: int = None):
        self.requested_date = requested_date
        self.horizon_days = horizon_days
        if horizon_days is not None:
            message = f"Appointments can only be booked up to {horizon_days} days in advance"
        else:
            message = "The selected date is too far ahead"
        super().__init__(message)


class DoctorUnavailableError(SchedulingError):
    """Raised when the doctor is not accepting appointments."""

    kind = "doctor_unavailable"

    def __init__(self, doctor_id: str = None, message: str = None):
        self.doctor_id = doctor_id
        super().__init__(message or "The doctor is not accepting appointments")


class NoWorkingHoursError(SchedulingError):
    """Raised when the doctor has no working hours on the requested weekday."""

    kind = "no_working_hours"

    def __init__(self, doctor_id: str = None, weekday: str = None):
        self.doctor_id = doctor_id
        self.weekday = weekday
        if weekday:
            message = f"The doctor does not work on {weekday.capitalize()}"
        else:
            message = "The doctor does not work on the selected day"
        super().__init__(message)


class EmergencyLaneFullError(SchedulingError):
    """Raised when every emergency slot for the day is taken."""

    kind = "emergency_lane_full"

    def __init__(self, max_slots: int):
        self.max_slots = max_slots
        super().__init__(f"All {max_slots} emergency slots for this day are taken")


class IllegalTransitionError(SchedulingError):
    """Raised when a status change is not allowed from the current status."""

    kind = "illegal_transition"

    def __init__(self, current: str, requested: str, message: str = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot change appointment status from '{current}' to '{requested}'")


class NoChangeError(SchedulingError):
    """Raised when a reschedule request matches the existing date and time."""

    kind = "no_change"

    def __init__(self, message: str = None):
        super().__init__(message or "Please select a different date or time")


class PartitionLockTimeout(SchedulingError):
    """Raised when the queue or appointment lock cannot be acquired in time."""

    kind = "lock_timeout"
    retryable = True

    def __init__(self, key=None, timeout: float = None):
        self.key = key
        self.timeout = timeout
        super().__init__("The queue is busy, please try again")


class NotFoundError(SchedulingError):
    """Raised when an appointment or doctor does not exist."""

    kind = "not_found"

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class AuthorizationError(SchedulingError):
    """Raised when the caller may not act on the appointment."""

    kind = "forbidden"

    def __init__(self, message: str = None):
        super().__init__(message or "You are not allowed to perform this action")


class InternalError(SchedulingError):
    """Raised for persistence failures; never carries storage details."""

    kind = "internal_error"

    def __init__(self, message: str = None):
        super().__init__(message or "Something went wrong, please try again later")
