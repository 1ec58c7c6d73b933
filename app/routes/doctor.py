from typing import Optional

from fastapi import APIRouter, Depends

from app.auth import ADMIN, DOCTOR, Identity, get_identity, require_role
from app.exceptions import ValidationError
from app.models import AvailabilityStatusRequest, WorkingHoursRequest
from app.services.container import SchedulingServices, get_services
from app.services.profiles import profile_read


router = APIRouter()


def _target_doctor(identity: Identity, doctor_id: Optional[str]) -> str:
    require_role(identity, DOCTOR, ADMIN)
    if identity.role == DOCTOR:
        return identity.user_id
    if not doctor_id:
        raise ValidationError("doctor_id is required")
    return doctor_id


@router.get("/doctor/availability")
def get_doctor_availability(
    doctor_id: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    profile = services.profiles.require(_target_doctor(identity, doctor_id))
    return {"status": "ok", "data": profile_read(profile)}


@router.put("/doctor/availability/status")
def update_availability_status(
    payload: AvailabilityStatusRequest,
    doctor_id: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    profile = services.profiles.set_status(_target_doctor(identity, doctor_id), payload.status)
    return {"status": "ok", "data": profile_read(profile)}


@router.put("/doctor/availability/working-hours")
def update_working_hours(
    payload: WorkingHoursRequest,
    doctor_id: Optional[str] = None,
    identity: Identity = Depends(get_identity),
    services: SchedulingServices = Depends(get_services),
):
    profile = services.profiles.set_working_hours(_target_doctor(identity, doctor_id), payload.working_hours)
    return {"status": "ok", "message": "Working hours updated", "data": profile_read(profile)}
