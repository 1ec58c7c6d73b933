from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth import (
    ADMIN,
    DOCTOR,
    PATIENT,
    STAFF_ROLES,
    Identity,
    authorize_change,
    authorize_view,
    get_identity,
    require_role,
)
from app.exceptions import ValidationError
from app.models import AppointmentRead, AppointmentStatus, QueueToggleRequest, TodayAppointmentRead
from app.services.container import SchedulingServices, get_services


router = APIRouter()

ACTIVE_STATUSES = [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS]


def _doctor_scope(identity: Identity, doctor_id: Optional[str]) -> str:
    """Doctors see their own queue; front desk staff pass the doctor explicitly."""
    if identity.role == DOCTOR:
        return identity.user_id
    require_role(identity, *STAFF_ROLES)
    if not doctor_id:
        raise ValidationError("doctor_id is required")
    return doctor_id


@router.get("/doctor/queue/status")
def get_queue_status(
    queue_date: Optional[date] = None,
    doctor_id: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    doctor_id = _doctor_scope(identity, doctor_id)
    return {"status": "ok", "data": services.ledger.status(doctor_id, queue_date or services.today())}


@router.put("/doctor/queue/toggle")
def toggle_queue(
    payload: QueueToggleRequest,
    doctor_id: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    doctor_id = _doctor_scope(identity, doctor_id)
    day = payload.queue_date or services.today()
    return {"status": "ok", "data": services.ledger.set_active(doctor_id, day, payload.is_active)}


@router.get("/doctor/appointments/today")
def get_today_appointments(
    doctor_id: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    doctor_id = _doctor_scope(identity, doctor_id)
    day = services.today()
    by_id = {a.id: a for a in services.lifecycle.list(doctor_id=doctor_id, appointment_date=day)}
    data = []
    for entry in services.ledger.entries(doctor_id, day):
        appointment = by_id.get(entry.appointment_id)
        # Moved entries belong to appointments now queued on another day
        if appointment is None or appointment.queue_entry_id != entry.id:
            continue
        data.append(TodayAppointmentRead.model_validate(appointment, update={"queue_state": entry.state}))
    return {"status": "ok", "data": data}


@router.post("/doctor/queue/call-next")
def call_next_in_queue(
    doctor_id: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    doctor_id = _doctor_scope(identity, doctor_id)
    appointment = services.lifecycle.call_next(doctor_id, services.today(), actor_id=identity.user_id)
    if appointment is None:
        return {"status": "ok", "message": "No patients waiting", "data": None}
    return {"status": "ok", "data": AppointmentRead.model_validate(appointment)}


@router.put("/doctor/appointments/{appointment_id}/call-next")
def call_patient(
    appointment_id: int,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    require_role(identity, DOCTOR, ADMIN)
    authorize_change(identity, services.lifecycle.get(appointment_id), AppointmentStatus.IN_PROGRESS)
    appointment = services.lifecycle.start_consultation(appointment_id, actor_id=identity.user_id)
    return {"status": "ok", "data": AppointmentRead.model_validate(appointment)}


@router.put("/doctor/appointments/{appointment_id}/complete")
def complete_consultation(
    appointment_id: int,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    require_role(identity, DOCTOR, ADMIN)
    authorize_change(identity, services.lifecycle.get(appointment_id), AppointmentStatus.COMPLETED)
    appointment = services.lifecycle.transition(
        appointment_id, AppointmentStatus.COMPLETED, actor_id=identity.user_id
    )
    return {"status": "ok", "data": AppointmentRead.model_validate(appointment)}


def _queue_position(services: SchedulingServices, appointment) -> dict:
    position = services.ledger.position(appointment.queue_entry_id)
    status = services.ledger.status(appointment.doctor_id, appointment.appointment_date)
    return {
        "appointment_id": appointment.id,
        "doctor_id": appointment.doctor_id,
        "appointment_date": appointment.appointment_date,
        "status": appointment.status,
        "current_number": status["current_number"],
        "current_emergency_number": status["current_emergency_number"],
        "serving_number": status["serving_number"],
        "queue_active": status["is_active"],
        **position,
    }


@router.get("/patient/queue/position")
def get_my_queue_positions(
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    require_role(identity, PATIENT)
    appointments = services.lifecycle.list(patient_id=identity.user_id, statuses=ACTIVE_STATUSES)
    upcoming = [a for a in appointments if a.appointment_date >= services.today() and a.queue_entry_id]
    return {"status": "ok", "data": {"appointments": [_queue_position(services, a) for a in upcoming]}}


@router.get("/patient/queue/position/{appointment_id}")
def get_queue_position(
    appointment_id: int,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    appointment = services.lifecycle.get(appointment_id)
    authorize_view(identity, appointment)
    return {"status": "ok", "data": _queue_position(services, appointment)}


@router.get("/patient/queue/doctor/{doctor_id}")
def get_doctor_queue_info(
    doctor_id: str,
    queue_date: Optional[date] = Query(default=None),
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    day = queue_date or services.today()
    status = services.ledger.status(doctor_id, day)
    # Patients only get the public counters, not the per-patient list
    data = {key: status[key] for key in (
        "doctor_id", "queue_date", "is_active", "current_number", "current_emergency_number",
        "serving_number", "waiting_count",
    )}
    data["estimated_wait_time"] = status["waiting_count"] * services.ledger.average_consultation_minutes
    return {"status": "ok", "data": data}
