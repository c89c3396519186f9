"""Cancellation and refund policy."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import OperationalError

from ..errors import CustomerUnauthenticated, Forbidden, InvalidStateTransition, Timeout
from ..extensions import db
from ..models import ACTIVE_STATUSES, Appointment, Provider, utc_naive
from .appointments import get_appointment, is_party, release_claims
from .availability import local_now
from .notifications import BOOKING_CANCELLED, DomainEvent, dispatch_notification, skip_pending_reminders
from .settlement import settle_cancellation
from .waitlist import notify_waitlist


@dataclass(frozen=True)
class RefundTier:
    hours_before: float
    refund_percentage: int


DEFAULT_TIERS = (
    RefundTier(hours_before=24, refund_percentage=100),
    RefundTier(hours_before=2, refund_percentage=50),
    RefundTier(hours_before=0, refund_percentage=0),
)


@dataclass(frozen=True)
class CancellationResult:
    appointment: Appointment
    refund_percentage: int
    refund_cents: int
    hours_until_appointment: float

    def to_dict(self) -> dict[str, object]:
        return {
            "appointment": self.appointment.to_dict(),
            "refund_percentage": self.refund_percentage,
            "refund_cents": self.refund_cents,
            "refund_dollars": self.refund_cents / 100.0,
            "hours_until_appointment": round(self.hours_until_appointment, 2),
        }


def select_refund_percentage(hours_until: float, tiers: Iterable[RefundTier]) -> int:
    """Percentage of the first tier, by descending threshold, with ``hours_until >= hours_before``."""
    if hours_until < 0:
        return 0
    for tier in sorted(tiers, key=lambda tier: tier.hours_before, reverse=True):
        if hours_until >= tier.hours_before:
            return tier.refund_percentage
    return 0


def compute_refund(amount_cents: int, percentage: int) -> int:
    return amount_cents * percentage // 100


def policy_tiers_for(provider: Provider) -> list[RefundTier]:
    tiers = [
        RefundTier(hours_before=tier.hours_before, refund_percentage=tier.refund_percentage)
        for tier in provider.cancellation_tiers
    ]
    return tiers or list(DEFAULT_TIERS)


def hours_until(appointment: Appointment, now: datetime | None = None) -> float:
    delta = appointment.starts_at - local_now(appointment.provider, now)
    return delta.total_seconds() / 3600


def cancel_appointment(
    appointment_id: int,
    cancelled_by: int | None,
    reason: str | None = None,
    now: datetime | None = None,
) -> CancellationResult:
    if cancelled_by is None:
        raise CustomerUnauthenticated()

    appointment = get_appointment(appointment_id)
    if not is_party(appointment, cancelled_by):
        raise Forbidden("Only the customer or the provider can cancel this appointment")
    if appointment.status not in ACTIVE_STATUSES:
        raise InvalidStateTransition(f"Cannot cancel an appointment with status '{appointment.status}'")

    hours = hours_until(appointment, now)
    percentage = select_refund_percentage(hours, policy_tiers_for(appointment.provider))
    refund_cents = compute_refund(appointment.price_cents, percentage)

    try:
        updated = (
            Appointment.query.filter(
                Appointment.appointment_id == appointment_id,
                Appointment.status.in_(ACTIVE_STATUSES),
            ).update(
                {
                    "status": "cancelled",
                    "cancellation_reason": reason,
                    "cancelled_by": cancelled_by,
                    "cancelled_at": utc_naive(now),
                    "refund_percentage": percentage,
                    "refund_cents": refund_cents,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            db.session.rollback()
            raise InvalidStateTransition("The appointment has already been cancelled or closed")
        release_claims(appointment_id)
        skip_pending_reminders(appointment_id)
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        raise Timeout() from exc

    appointment = get_appointment(appointment_id)
    current_app.logger.info(
        "Appointment %s cancelled by user %s, %.2fh ahead, refund %s%% (%s cents)",
        appointment_id,
        cancelled_by,
        hours,
        percentage,
        refund_cents,
    )

    settle_cancellation(appointment, refund_cents, reason)

    dispatch_notification(DomainEvent(BOOKING_CANCELLED, appointment), now)
    notify_waitlist(appointment, now)
    return CancellationResult(
        appointment=appointment,
        refund_percentage=percentage,
        refund_cents=refund_cents,
        hours_until_appointment=hours,
    )

