"""Appointment lookups shared by the booking, cancellation and review flows."""
from __future__ import annotations

from ..errors import AppointmentNotFound
from ..extensions import db
from ..models import Appointment, SlotClaim


def get_appointment(appointment_id: int) -> Appointment:
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound()
    return appointment


def is_party(appointment: Appointment, actor_id: int | None) -> bool:
    """True for the appointment's customer and the owner of its provider."""
    if actor_id is None:
        return False
    return actor_id == appointment.customer_id or actor_id == appointment.provider.owner_id


def release_claims(appointment_id: int) -> int:
    """Delete the appointment's minute claims (caller commits)."""
    return SlotClaim.query.filter_by(appointment_id=appointment_id).delete(synchronize_session=False)
