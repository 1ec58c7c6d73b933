"""
Caller identity and appointment access rules.

Authentication happens upstream; the gateway forwards the caller as the
``X-User-Id`` and ``X-User-Role`` headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from app.exceptions import AuthorizationError
from app.models import Appointment, AppointmentStatus


PATIENT = "patient"
DOCTOR = "doctor"
ADMIN = "admin"
NURSE = "nurse"
BILLING = "billing"

ROLES = {PATIENT, DOCTOR, ADMIN, NURSE, BILLING}

# Front-desk roles that may book and view on behalf of patients
STAFF_ROLES = {ADMIN, NURSE}


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str

    def is_(self, *roles) -> bool:
        return self.role in roles


def get_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Identity:
    if not x_user_id or not x_user_role:
        raise AuthorizationError("Authentication required")
    role = x_user_role.strip().lower()
    if role not in ROLES:
        raise AuthorizationError(f"Unknown role: {x_user_role}")
    return Identity(user_id=x_user_id.strip(), role=role)


def require_role(identity: Identity, *roles) -> None:
    if identity.role not in roles:
        raise AuthorizationError()


def can_view(identity: Identity, appointment: Appointment) -> bool:
    if identity.role in STAFF_ROLES:
        return True
    if identity.role == PATIENT:
        return appointment.patient_id == identity.user_id
    if identity.role == DOCTOR:
        return appointment.doctor_id == identity.user_id
    return False


def authorize_view(identity: Identity, appointment: Appointment) -> None:
    if not can_view(identity, appointment):
        raise AuthorizationError("You can only view your own appointments")


def authorize_change(identity: Identity, appointment: Appointment, new_status=None) -> None:
    """Owning patient may cancel or reschedule; assigned doctor and admins may do anything."""
    if identity.role == ADMIN:
        return
    if identity.role == DOCTOR and appointment.doctor_id == identity.user_id:
        return
    if identity.role == PATIENT and appointment.patient_id == identity.user_id:
        if new_status is None or new_status == AppointmentStatus.CANCELLED:
            return
        raise AuthorizationError("Patients can only cancel or reschedule their appointments")
    raise AuthorizationError("You are not allowed to change this appointment")
