"""Waitlist for fully booked days.

Customers queue for a provider, service and date, optionally with a preferred
window. When an appointment on that date is cancelled, every matching active
entry is notified once and marked ``notified``; first to book wins the slot.
"""
from __future__ import annotations

from datetime import date, datetime, time

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import AlreadyWaitlisted, CustomerUnauthenticated, Forbidden, InvalidInput, WaitlistEntryNotFound
from ..extensions import db
from ..models import Appointment, WaitlistEntry, utc_naive
from .availability import get_bookable_service, get_provider, intervals_overlap, local_now
from .notifications import WAITLIST_SLOT_AVAILABLE, DomainEvent, dispatch_notification
from .time_grid import to_minutes


def join_waitlist(
    customer_id: int | None,
    provider_id: int,
    service_id: int,
    waitlist_date: date,
    start_time: time | None = None,
    end_time: time | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> WaitlistEntry:
    if not customer_id:
        raise CustomerUnauthenticated()

    provider = get_provider(provider_id)
    service = get_bookable_service(provider, service_id)

    if waitlist_date < local_now(provider, now).date():
        raise InvalidInput("Cannot join the waitlist for a past date", field="date")
    if (start_time is None) != (end_time is None):
        raise InvalidInput("start_time and end_time must be given together")
    if start_time is not None and start_time >= end_time:
        raise InvalidInput("start_time must be before end_time")

    existing = WaitlistEntry.query.filter_by(
        customer_id=customer_id,
        provider_id=provider.provider_id,
        service_id=service.service_id,
        waitlist_date=waitlist_date,
        status="active",
    ).first()
    if existing is not None:
        raise AlreadyWaitlisted()

    entry = WaitlistEntry(
        customer_id=customer_id,
        provider_id=provider.provider_id,
        service_id=service.service_id,
        waitlist_date=waitlist_date,
        start_time=start_time,
        end_time=end_time,
        notes=notes,
        status="active",
    )
    db.session.add(entry)
    db.session.commit()
    current_app.logger.info(
        "Customer %s joined the waitlist of provider %s for %s", customer_id, provider_id, waitlist_date.isoformat()
    )
    return entry


def leave_waitlist(waitlist_id: int, customer_id: int | None) -> WaitlistEntry:
    if not customer_id:
        raise CustomerUnauthenticated()
    entry = db.session.get(WaitlistEntry, waitlist_id)
    if entry is None:
        raise WaitlistEntryNotFound()
    if entry.customer_id != customer_id:
        raise Forbidden("You do not have permission to cancel this waitlist entry")
    if entry.status != "cancelled":
        entry.status = "cancelled"
        db.session.commit()
    return entry


def list_waitlist(customer_id: int) -> list[WaitlistEntry]:
    return (
        WaitlistEntry.query.filter_by(customer_id=customer_id)
        .order_by(WaitlistEntry.created_at.desc(), WaitlistEntry.waitlist_id.desc())
        .all()
    )


def wants_slot(entry: WaitlistEntry, start_time: time, end_time: time) -> bool:
    """True when the freed ``[start_time, end_time)`` falls in the entry's preferred window."""
    if entry.flexible:
        return True
    return intervals_overlap(
        to_minutes(entry.start_time), to_minutes(entry.end_time), to_minutes(start_time), to_minutes(end_time)
    )


def notify_waitlist(appointment: Appointment, now: datetime | None = None) -> list[WaitlistEntry]:
    """Notify customers waiting on the date of a freed appointment."""
    try:
        entries = (
            WaitlistEntry.query.filter(
                WaitlistEntry.provider_id == appointment.provider_id,
                WaitlistEntry.waitlist_date == appointment.appointment_date,
                WaitlistEntry.status == "active",
            )
            .order_by(WaitlistEntry.created_at, WaitlistEntry.waitlist_id)
            .all()
        )
        matching = [
            entry
            for entry in entries
            if entry.customer_id != appointment.customer_id
            and wants_slot(entry, appointment.start_time, appointment.end_time)
        ]
        notified_at = utc_naive(now)
        for entry in matching:
            entry.status = "notified"
            entry.notified_at = notified_at
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to notify the waitlist for appointment %s", appointment.appointment_id, exc_info=exc
        )
        return []

    for entry in matching:
        service = entry.service
        dispatch_notification(
            DomainEvent(
                WAITLIST_SLOT_AVAILABLE,
                appointment,
                {"service_name": service.name, "amount": f"{service.price_cents / 100:.2f}"},
                recipient=entry.customer,
            ),
            now,
        )
    if matching:
        current_app.logger.info(
            "Notified %s waitlisted customers of the slot freed by appointment %s",
            len(matching),
            appointment.appointment_id,
        )
    return matching
