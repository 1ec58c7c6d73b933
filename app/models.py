from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Dict, List, Optional
from datetime import date, datetime, time, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Some backends hand timestamps back without tzinfo; they were written as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class AppointmentType(str, Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow-up"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class EntryState(str, Enum):
    WAITING = "waiting"
    SERVING = "serving"
    SERVED = "served"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    MOVED = "moved"


EMERGENCY_PREFIX = "E"


def format_queue_number(lane_number: int, is_emergency: bool) -> str:
    return f"{EMERGENCY_PREFIX}{lane_number}" if is_emergency else str(lane_number)


class DoctorProfile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: str = Field(index=True, unique=True)
    name: Optional[str] = None
    specialty: Optional[str] = None
    working_hours: str = "{}"  # canonical JSON: {"monday": {"start": "09:00", "end": "17:00"}, ...}
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    updated_at: datetime = Field(default_factory=utcnow)


class QueuePartition(SQLModel, table=True):
    """Counter row for one (doctor, day) queue; every allocation locks it."""

    __table_args__ = (UniqueConstraint("doctor_id", "queue_date", name="uq_partition_doctor_day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: str = Field(index=True)
    queue_date: date = Field(index=True)
    regular_count: int = 0
    emergency_count: int = 0
    sequence: int = 0
    serving_entry_id: Optional[int] = None
    current_number: int = 0
    current_emergency_number: int = 0
    max_emergency_slots: int = 0
    is_active: bool = True
    updated_at: datetime = Field(default_factory=utcnow)


class QueueEntry(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("doctor_id", "queue_date", "is_emergency", "lane_number", name="uq_entry_lane_number"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: str = Field(index=True)
    queue_date: date = Field(index=True)
    lane_number: int
    is_emergency: bool = False
    sequence: int
    state: EntryState = EntryState.WAITING
    appointment_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    served_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def queue_number(self) -> str:
        return format_queue_number(self.lane_number, self.is_emergency)


class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: str = Field(index=True)
    doctor_id: str = Field(index=True)
    appointment_date: date = Field(index=True)
    appointment_time: Optional[time] = None
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    reason_for_visit: str
    symptoms: Optional[str] = None
    priority: Priority = Priority.LOW
    is_emergency: bool = False
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    queue_entry_id: Optional[int] = None
    queue_number: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AppointmentHistory(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    appointment_id: int = Field(index=True)
    event: str  # "booked", "status_change" or "rescheduled"
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class IdempotencyRecord(SQLModel, table=True):
    key: str = Field(primary_key=True)
    appointment_id: int
    created_at: datetime = Field(default_factory=utcnow)


# Request payloads


class BookQueueRequest(SQLModel):
    doctor_id: str
    appointment_date: date
    appointment_time: Optional[time] = None
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    reason_for_visit: Optional[str] = None
    symptoms: Optional[str] = None
    priority: Optional[Priority] = None
    is_emergency: bool = False
    client_nonce: Optional[str] = None


class AdminBookQueueRequest(BookQueueRequest):
    patient_id: str


class StatusUpdateRequest(SQLModel):
    status: str
    notes: Optional[str] = None


class ActionRequest(SQLModel):
    action: str
    notes: Optional[str] = None


class RescheduleRequest(SQLModel):
    appointment_date: date
    appointment_time: Optional[time] = None


class CancelRequest(SQLModel):
    cancellation_reason: Optional[str] = None


class AvailabilityStatusRequest(SQLModel):
    status: AvailabilityStatus


class WorkingHoursRequest(SQLModel):
    working_hours: dict


class QueueToggleRequest(SQLModel):
    is_active: bool
    queue_date: Optional[date] = None


# Response payloads


class AppointmentRead(SQLModel):
    id: int
    patient_id: str
    doctor_id: str
    appointment_date: date
    appointment_time: Optional[time] = None
    appointment_type: AppointmentType
    reason_for_visit: str
    symptoms: Optional[str] = None
    priority: Priority
    is_emergency: bool
    status: AppointmentStatus
    queue_number: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class AppointmentHistoryRead(SQLModel):
    event: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class AppointmentDetail(AppointmentRead):
    history: List[AppointmentHistoryRead] = []


class TodayAppointmentRead(AppointmentRead):
    queue_state: EntryState


class AppointmentStatusRead(SQLModel):
    id: int
    status: AppointmentStatus


class DoctorProfileRead(SQLModel):
    doctor_id: str
    name: Optional[str] = None
    specialty: Optional[str] = None
    working_hours: Dict[str, Dict[str, str]] = {}
    availability_status: AvailabilityStatus
