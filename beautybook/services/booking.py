"""
Booking Transaction Manager.

A booking is accepted only if it passes every availability rule at commit time
and its minute claims insert cleanly. The pre-check gives precise errors; the
UNIQUE constraint on ``slot_claims`` is what actually rules out two overlapping
active appointments, however many requests race for the same time.
"""
from __future__ import annotations

from datetime import date, datetime, time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from ..errors import (
    CustomerUnauthenticated,
    DependencyUnavailable,
    Forbidden,
    InvalidInput,
    InvalidStateTransition,
    PolicyViolation,
    SlotConflict,
    Timeout,
)
from ..extensions import db
from ..models import ACTIVE_STATUSES, TERMINAL_STATUSES, Appointment, Provider, SlotClaim, Transaction
from .appointments import get_appointment, is_party, release_claims
from .availability import (
    REASON_ADVANCE,
    REASON_BLOCKED,
    REASON_NOTICE,
    blocks_for,
    get_bookable_service,
    get_provider,
    live_appointments,
    local_now,
    slot_unavailable_reason,
)
from .cancellation import cancel_appointment
from .notifications import (
    BOOKING_CREATED,
    BOOKING_RESCHEDULED,
    DomainEvent,
    dispatch_notification,
    schedule_reminders,
    skip_pending_reminders,
)
from .payments import authorize_payment
from .settlement import settle_visit
from .time_grid import MINUTES_PER_DAY, from_minutes, opening_window, to_minutes, weekday_of

MAX_IDEMPOTENCY_KEY_LENGTH = 128

APPOINTMENT_STATUSES = ACTIVE_STATUSES + TERMINAL_STATUSES

STATUS_TRANSITIONS = {
    "scheduled": ("confirmed", "cancelled"),
    "confirmed": ("completed", "no-show", "cancelled"),
}


def claim_minutes(
    appointment_id: int,
    provider_id: int,
    claim_date: date,
    start_time: time,
    end_time: time,
    buffer_minutes: int,
) -> list[SlotClaim]:
    """Claim rows for every minute of ``[start, end + buffer)``.

    Two such ranges share a minute exactly when one appointment overlaps the
    other extended by the buffer on both sides.
    """
    first = to_minutes(start_time)
    last = to_minutes(end_time) + (buffer_minutes or 0)
    return [
        SlotClaim(
            provider_id=provider_id,
            appointment_id=appointment_id,
            claim_date=claim_date,
            minute=minute,
        )
        for minute in range(first, last)
    ]


def end_time_for(start_time: time, duration_minutes: int) -> time:
    end = to_minutes(start_time) + duration_minutes
    if end >= MINUTES_PER_DAY:
        raise InvalidInput("Appointment must end on the same day it starts")
    return from_minutes(end)


def ensure_slot_bookable(
    provider: Provider,
    target_date: date,
    start_time: time,
    duration_minutes: int,
    now: datetime | None = None,
    exclude_id: int | None = None,
) -> None:
    """Raise unless ``start_time`` on ``target_date`` can be booked right now."""
    window = opening_window(provider.hours_for_weekday(weekday_of(target_date)))
    start = to_minutes(start_time)
    if window is None or start < window[0] or start + duration_minutes > window[1]:
        raise PolicyViolation("The requested time is outside the provider's working hours")

    reason = slot_unavailable_reason(
        start_time,
        duration_minutes,
        target_date=target_date,
        appointments=live_appointments(provider.provider_id, target_date, exclude_id=exclude_id),
        blocks=blocks_for(provider.provider_id, target_date),
        buffer_minutes=provider.buffer_minutes,
        min_notice_minutes=provider.min_notice_minutes,
        max_advance_days=provider.max_advance_days,
        now=local_now(provider, now),
    )
    if reason == REASON_NOTICE:
        raise PolicyViolation(
            f"Bookings require at least {provider.min_notice_minutes} minutes notice", reason=reason
        )
    if reason == REASON_ADVANCE:
        raise PolicyViolation(
            f"Bookings can be made at most {provider.max_advance_days} days in advance", reason=reason
        )
    if reason == REASON_BLOCKED:
        raise SlotConflict("The provider is unavailable at this time", reason=reason)
    if reason is not None:
        raise SlotConflict(reason=reason)


def _replay(idempotency_key: str, customer_id: int) -> Appointment | None:
    existing = Appointment.query.filter_by(idempotency_key=idempotency_key).first()
    if existing is None:
        return None
    if existing.customer_id != customer_id:
        raise InvalidInput("Idempotency key has already been used for a different booking")
    return existing


def _conflict_or_replay(idempotency_key: str, customer_id: int) -> Appointment:
    existing = _replay(idempotency_key, customer_id)
    if existing is None:
        raise SlotConflict()
    return existing


def book_appointment(
    provider_id: int,
    service_id: int,
    customer_id: int | None,
    appointment_date: date,
    start_time: time,
    idempotency_key: str | None,
    notes: str | None = None,
    now: datetime | None = None,
) -> tuple[Appointment, bool]:
    """Book a slot. Returns ``(appointment, created)``.

    Replaying an idempotency key returns the original appointment with
    ``created=False`` and has no side effects.
    """
    if not customer_id:
        raise CustomerUnauthenticated()

    key = (idempotency_key or "").strip()
    if not key:
        raise InvalidInput("An idempotency key is required to book")
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise InvalidInput(f"Idempotency key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters")

    existing = _replay(key, customer_id)
    if existing is not None:
        return existing, False

    provider = get_provider(provider_id)
    service = get_bookable_service(provider, service_id)
    end_time = end_time_for(start_time, service.duration_minutes)

    ensure_slot_bookable(provider, appointment_date, start_time, service.duration_minutes, now)

    appointment = Appointment(
        provider_id=provider.provider_id,
        service_id=service.service_id,
        customer_id=customer_id,
        appointment_date=appointment_date,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=service.duration_minutes,
        price_cents=service.price_cents,
        buffer_minutes=provider.buffer_minutes,
        status="confirmed" if provider.auto_confirm else "scheduled",
        payment_status="pending",
        idempotency_key=key,
        notes=notes,
    )

    try:
        db.session.add(appointment)
        db.session.flush()
        db.session.add_all(
            claim_minutes(
                appointment.appointment_id,
                provider.provider_id,
                appointment_date,
                start_time,
                end_time,
                provider.buffer_minutes,
            )
        )
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info("Slot claim collision for provider %s on %s %s", provider_id, appointment_date, start_time)
        return _conflict_or_replay(key, customer_id), False
    except OperationalError as exc:
        db.session.rollback()
        raise Timeout() from exc

    try:
        payment_reference = authorize_payment(
            appointment.price_cents,
            appointment_id=appointment.appointment_id,
            customer_id=customer_id,
            provider_id=provider.provider_id,
            idempotency_key=key,
        )
    except DependencyUnavailable:
        db.session.rollback()
        raise

    if payment_reference:
        appointment.payment_status = "authorized"
        appointment.payment_reference = payment_reference
        db.session.add(
            Transaction(
                user_id=customer_id,
                appointment_id=appointment.appointment_id,
                kind="authorization",
                amount_cents=appointment.price_cents,
                gateway_payment_id=payment_reference,
                status="succeeded",
            )
        )

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _conflict_or_replay(key, customer_id), False
    except OperationalError as exc:
        db.session.rollback()
        raise Timeout() from exc

    current_app.logger.info(
        "Appointment %s booked for provider %s on %s at %s",
        appointment.appointment_id,
        provider.provider_id,
        appointment_date.isoformat(),
        start_time.strftime("%H:%M"),
    )

    dispatch_notification(DomainEvent(BOOKING_CREATED, appointment), now)
    schedule_reminders(appointment, now)
    return appointment, True


def reschedule_appointment(
    appointment_id: int,
    actor_id: int | None,
    new_date: date,
    new_start: time,
    now: datetime | None = None,
) -> Appointment:
    if actor_id is None:
        raise CustomerUnauthenticated()
    appointment = get_appointment(appointment_id)
    if not is_party(appointment, actor_id):
        raise Forbidden("Only the customer or the provider can reschedule this appointment")
    if not appointment.is_active:
        raise InvalidStateTransition(f"Cannot reschedule an appointment with status '{appointment.status}'")

    provider = appointment.provider
    new_end = end_time_for(new_start, appointment.duration_minutes)
    ensure_slot_bookable(provider, new_date, new_start, appointment.duration_minutes, now, exclude_id=appointment_id)

    old_date = appointment.appointment_date.isoformat()
    old_time = appointment.start_time.strftime("%H:%M")
    provider_id = provider.provider_id
    buffer_minutes = provider.buffer_minutes

    try:
        release_claims(appointment_id)
        updated = (
            Appointment.query.filter(
                Appointment.appointment_id == appointment_id,
                Appointment.status.in_(ACTIVE_STATUSES),
            ).update(
                {
                    "appointment_date": new_date,
                    "start_time": new_start,
                    "end_time": new_end,
                    "buffer_minutes": buffer_minutes,
                    "status": "scheduled",
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            db.session.rollback()
            raise InvalidStateTransition("The appointment is no longer active")
        db.session.add_all(claim_minutes(appointment_id, provider_id, new_date, new_start, new_end, buffer_minutes))
        skip_pending_reminders(appointment_id)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise SlotConflict()
    except OperationalError as exc:
        db.session.rollback()
        raise Timeout() from exc

    appointment = get_appointment(appointment_id)
    current_app.logger.info("Appointment %s moved from %s %s to %s", appointment_id, old_date, old_time, appointment.starts_at)

    dispatch_notification(
        DomainEvent(BOOKING_RESCHEDULED, appointment, {"old_date": old_date, "old_time": old_time}), now
    )
    schedule_reminders(appointment, now)
    return appointment


def update_status(appointment_id: int, new_status: str, actor_id: int | None, now: datetime | None = None) -> Appointment:
    """Move an appointment along its lifecycle.

    The provider owner or the assigned staff member may confirm, complete or
    mark no-show; the latter two capture the payment hold. Cancellation goes
    through the refund engine.
    """
    if actor_id is None:
        raise CustomerUnauthenticated()
    if new_status not in APPOINTMENT_STATUSES:
        raise InvalidInput(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}")

    appointment = get_appointment(appointment_id)

    if new_status == "cancelled":
        return cancel_appointment(appointment_id, actor_id, now=now).appointment

    staff_user_id = appointment.staff.user_id if appointment.staff else None
    if actor_id not in (appointment.provider.owner_id, staff_user_id):
        raise Forbidden("Only the provider or assigned staff can update this appointment")

    current_status = appointment.status
    if new_status not in STATUS_TRANSITIONS.get(current_status, ()):
        raise InvalidStateTransition(f"Cannot change status from '{current_status}' to '{new_status}'")

    try:
        updated = (
            Appointment.query.filter(
                Appointment.appointment_id == appointment_id,
                Appointment.status == current_status,
            ).update({"status": new_status}, synchronize_session=False)
        )
        if updated != 1:
            db.session.rollback()
            raise InvalidStateTransition("The appointment status changed concurrently, reload and retry")
        if new_status in TERMINAL_STATUSES:
            release_claims(appointment_id)
            skip_pending_reminders(appointment_id)
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        raise Timeout() from exc

    current_app.logger.info("Appointment %s status %s -> %s", appointment_id, current_status, new_status)
    appointment = get_appointment(appointment_id)
    if new_status in ("completed", "no-show"):
        settle_visit(appointment)
    return appointment
