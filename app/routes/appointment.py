from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query

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
from app.models import (
    ActionRequest,
    AdminBookQueueRequest,
    AppointmentDetail,
    AppointmentHistoryRead,
    AppointmentRead,
    AppointmentStatus,
    AppointmentStatusRead,
    BookQueueRequest,
    CancelRequest,
    RescheduleRequest,
    StatusUpdateRequest,
)
from app.services.container import SchedulingServices, get_services
from app.services.lifecycle import ACTIONS, coerce_status


router = APIRouter()


def _book(services: SchedulingServices, patient_id: str, payload: BookQueueRequest, actor: Identity,
          idempotency_key: Optional[str]):
    result = services.booking.book(
        patient_id=patient_id,
        doctor_id=payload.doctor_id,
        appointment_date=payload.appointment_date,
        appointment_type=payload.appointment_type,
        reason_for_visit=payload.reason_for_visit,
        symptoms=payload.symptoms,
        is_emergency=payload.is_emergency,
        priority=payload.priority,
        appointment_time=payload.appointment_time,
        idempotency_key=idempotency_key or payload.client_nonce,
        actor_id=actor.user_id,
    )
    message = "Appointment already booked" if result.replayed else "Appointment booked successfully"
    return {"status": "ok", "message": message, "data": result}


@router.post("/patients/appointments/queue", status_code=201)
def book_queue_appointment(
    payload: BookQueueRequest,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
    idempotency_key: Optional[str] = Header(default=None),
):
    require_role(identity, PATIENT)
    return _book(services, identity.user_id, payload, identity, idempotency_key)


@router.post("/admin/appointments/queue", status_code=201)
def book_queue_appointment_for_patient(
    payload: AdminBookQueueRequest,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
    idempotency_key: Optional[str] = Header(default=None),
):
    require_role(identity, *STAFF_ROLES)
    return _book(services, payload.patient_id, payload, identity, idempotency_key)


@router.get("/appointments/available-slots")
def get_available_slots(
    doctor_id: str,
    day: date = Query(alias="date"),
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    return {"status": "ok", "data": services.booking.available_slots(doctor_id, day)}


@router.get("/appointments")
def list_appointments(
    appointment_date: Optional[date] = None,
    status: Optional[List[str]] = Query(default=None),
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    statuses = [coerce_status(s) for s in status] if status else None
    filters = {"appointment_date": appointment_date, "statuses": statuses}
    if identity.role == PATIENT:
        filters["patient_id"] = identity.user_id
    elif identity.role == DOCTOR:
        filters["doctor_id"] = identity.user_id
    else:
        require_role(identity, *STAFF_ROLES)
    appointments = services.lifecycle.list(**filters)
    return {"status": "ok", "data": [AppointmentRead.model_validate(a) for a in appointments]}


@router.get("/appointments/{appointment_id}")
def get_appointment(
    appointment_id: int,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    appointment = services.lifecycle.get(appointment_id)
    authorize_view(identity, appointment)
    history = [AppointmentHistoryRead.model_validate(h) for h in services.lifecycle.history(appointment_id)]
    data = AppointmentDetail.model_validate(appointment, update={"history": history})
    return {"status": "ok", "data": data}


@router.patch("/appointments/{appointment_id}/status")
def update_appointment_status(
    appointment_id: int,
    payload: StatusUpdateRequest,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    new_status = coerce_status(payload.status)
    authorize_change(identity, services.lifecycle.get(appointment_id), new_status)
    appointment = services.lifecycle.transition(
        appointment_id, new_status, notes=payload.notes, actor_id=identity.user_id
    )
    return {"status": "ok", "data": AppointmentStatusRead.model_validate(appointment)}


@router.patch("/doctors/appointments/{appointment_id}/action")
def handle_appointment_action(
    appointment_id: int,
    payload: ActionRequest,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    require_role(identity, DOCTOR, ADMIN)
    requested = ACTIONS.get(payload.action.strip().lower().replace("_", "-"))
    authorize_change(identity, services.lifecycle.get(appointment_id), requested)
    appointment = services.lifecycle.perform_action(
        appointment_id, payload.action, notes=payload.notes, actor_id=identity.user_id
    )
    return {"status": "ok", "data": AppointmentRead.model_validate(appointment)}


@router.put("/appointments/{appointment_id}/reschedule")
def reschedule_appointment(
    appointment_id: int,
    payload: RescheduleRequest,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    authorize_change(identity, services.lifecycle.get(appointment_id))
    result = services.reschedule.reschedule(
        appointment_id, payload.appointment_date, payload.appointment_time, actor_id=identity.user_id
    )
    return {"status": "ok", "message": "Appointment rescheduled successfully", "data": result}


@router.put("/appointments/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: int,
    payload: Optional[CancelRequest] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    authorize_change(identity, services.lifecycle.get(appointment_id), AppointmentStatus.CANCELLED)
    reason = payload.cancellation_reason if payload else None
    appointment = services.reschedule.cancel(appointment_id, reason, actor_id=identity.user_id)
    return {"status": "ok", "data": AppointmentStatusRead.model_validate(appointment)}
