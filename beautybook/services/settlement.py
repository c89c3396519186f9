"""
Payment settlement for held bookings.

Every paid booking starts as an ``authorized`` manual-capture hold. Settling it
moves the appointment to one of:

* ``captured``: the full price was taken (completed, no-show, or a
  cancellation with no refund);
* ``partially_refunded``: part of the price was taken and the rest was never
  charged, or a captured charge was partially refunded;
* ``released`` / ``refunded``: nothing is kept;
* ``capture_failed`` / ``refund_failed``: the processor call failed and the
  hold still needs attention;
* ``expired``: the processor dropped the hold before it was captured.

Processor failures never undo the status change that triggered them.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import DependencyUnavailable
from ..extensions import db
from ..models import Appointment, Transaction
from .payments import capture_payment, refund_payment, release_payment


def _transaction(appointment: Appointment, kind: str, amount_cents: int, **fields: object) -> Transaction:
    return Transaction(
        user_id=appointment.customer_id,
        appointment_id=appointment.appointment_id,
        kind=kind,
        amount_cents=amount_cents,
        **fields,
    )


def _save(appointment: Appointment, transaction: Transaction, action: str) -> None:
    try:
        db.session.add(transaction)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to record %s for appointment %s", action, appointment.appointment_id, exc_info=exc
        )


def capture_held_payment(appointment: Appointment, amount_cents: int, *, partial: bool = False) -> None:
    """Capture ``amount_cents`` of the appointment's hold and record the outcome."""
    try:
        charge_id = capture_payment(
            appointment.payment_reference,
            amount_cents,
            appointment_id=appointment.appointment_id,
        )
    except DependencyUnavailable as exc:
        appointment.payment_status = "capture_failed"
        transaction = _transaction(appointment, "capture", amount_cents, status="failed", error=exc.message)
        current_app.logger.warning("Capture for appointment %s failed: %s", appointment.appointment_id, exc.message)
    else:
        appointment.payment_status = "partially_refunded" if partial else "captured"
        transaction = _transaction(
            appointment, "capture", amount_cents, gateway_payment_id=charge_id, status="succeeded"
        )
    _save(appointment, transaction, "capture")


def release_held_payment(appointment: Appointment) -> None:
    """Drop the hold entirely so the customer is never charged."""
    try:
        release_payment(appointment.payment_reference, appointment_id=appointment.appointment_id)
    except DependencyUnavailable as exc:
        appointment.payment_status = "refund_failed"
        transaction = _transaction(
            appointment, "release", appointment.price_cents, status="failed", error=exc.message
        )
        current_app.logger.warning("Release for appointment %s failed: %s", appointment.appointment_id, exc.message)
    else:
        appointment.payment_status = "released"
        transaction = _transaction(appointment, "release", appointment.price_cents, status="succeeded")
    _save(appointment, transaction, "release")


def refund_captured_payment(appointment: Appointment, refund_cents: int, reason: str | None = None) -> None:
    """Refund part or all of a charge that was already captured."""
    try:
        refund_id = refund_payment(
            appointment.payment_reference,
            refund_cents,
            appointment_id=appointment.appointment_id,
            reason=reason,
        )
    except DependencyUnavailable as exc:
        appointment.payment_status = "refund_failed"
        transaction = _transaction(appointment, "refund", refund_cents, status="failed", error=exc.message)
        current_app.logger.warning("Refund for appointment %s failed: %s", appointment.appointment_id, exc.message)
    else:
        appointment.refund_reference = refund_id
        appointment.payment_status = "refunded" if refund_cents >= appointment.price_cents else "partially_refunded"
        transaction = _transaction(
            appointment, "refund", refund_cents, gateway_payment_id=refund_id, status="succeeded"
        )
    _save(appointment, transaction, "refund")


def settle_cancellation(appointment: Appointment, refund_cents: int, reason: str | None = None) -> None:
    """Keep ``price - refund_cents`` of a cancelled appointment's payment."""
    if not appointment.payment_reference:
        return
    if appointment.payment_status == "authorized":
        kept = appointment.price_cents - refund_cents
        if kept <= 0:
            release_held_payment(appointment)
        else:
            capture_held_payment(appointment, kept, partial=refund_cents > 0)
    elif appointment.payment_status == "captured" and refund_cents > 0:
        refund_captured_payment(appointment, refund_cents, reason)


def settle_visit(appointment: Appointment) -> None:
    """Capture the full price once the appointment is completed or a no-show."""
    if appointment.payment_reference and appointment.payment_status == "authorized":
        capture_held_payment(appointment, appointment.price_cents)


# Stripe webhook events that change the state of a hold
HOLD_EVENTS = {
    "payment_intent.succeeded": "captured",
    "payment_intent.canceled": "released",
}


def apply_payment_event(event: dict) -> Appointment | None:
    """Reflect a processor-side change of a hold onto its appointment.

    Only appointments still ``authorized`` are touched, so replayed events and
    events for holds this service already settled are no-ops.
    """
    event_type = event.get("type")
    intent = event.get("data", {}).get("object", {}) or {}
    intent_id = intent.get("id")

    if event_type not in HOLD_EVENTS or not intent_id:
        current_app.logger.info("Ignoring payment event %s", event_type)
        return None

    new_status = HOLD_EVENTS[event_type]
    if event_type == "payment_intent.canceled" and intent.get("cancellation_reason") == "automatic":
        new_status = "expired"

    updated = (
        Appointment.query.filter(
            Appointment.payment_reference == intent_id,
            Appointment.payment_status == "authorized",
        ).update({"payment_status": new_status}, synchronize_session=False)
    )
    db.session.commit()
    if not updated:
        return None

    appointment = Appointment.query.filter_by(payment_reference=intent_id).one()
    current_app.logger.info(
        "Payment %s of appointment %s is now %s", intent_id, appointment.appointment_id, new_status
    )
    return appointment
