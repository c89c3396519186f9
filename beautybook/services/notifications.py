"""
Notification Dispatch Gate.

Domain events are turned into per-channel Notification rows rendered from the
fixed templates and stored as ``pending``. Delivery happens out of band in
:func:`send_pending_notifications` (the cron route or the ``sweep-notifications``
worker), so no request waits on an email or SMS provider.
Nothing in here raises into the booking or cancellation flow.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Appointment, Notification, User, utc_naive
from .availability import provider_timezone
from .notification_templates import render, resolve_locale
from .preferences import get_preferences
from .transports import DeliveryResult, send_email, send_sms

BOOKING_CREATED = "booking_created"
BOOKING_CANCELLED = "booking_cancelled"
BOOKING_RESCHEDULED = "booking_rescheduled"
REMINDER_DUE = "reminder_due"
WAITLIST_SLOT_AVAILABLE = "waitlist_slot_available"

EVENT_TYPES = (BOOKING_CREATED, BOOKING_CANCELLED, BOOKING_RESCHEDULED, REMINDER_DUE, WAITLIST_SLOT_AVAILABLE)

# (lead time, channels, preference flag)
REMINDER_SCHEDULE = (
    (timedelta(hours=24), ("email", "sms"), "reminder_before_24h"),
    (timedelta(hours=2), ("sms",), "reminder_before_2h"),
)

RETRYABLE_STATUSES = ("pending", "failed")


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    appointment: Appointment
    data: dict = field(default_factory=dict)
    # Defaults to the appointment's customer
    recipient: User | None = None


def appointment_start_utc(appointment: Appointment) -> datetime:
    """Naive UTC instant at which the appointment starts."""
    tz = provider_timezone(appointment.provider)
    return appointment.starts_at.replace(tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)


def channels_for(user: User, preferences: dict) -> list[str]:
    channels = []
    if preferences.get("email_enabled", True) and user.email:
        channels.append("email")
    if preferences.get("sms_enabled") and user.phone:
        channels.append("sms")
    return channels


def message_context(
    appointment: Appointment, data: dict | None = None, recipient: User | None = None
) -> dict[str, object]:
    data = data or {}
    provider = appointment.provider
    customer = recipient or appointment.customer
    context = {
        "customer_name": customer.name if customer else "",
        "provider_name": provider.name if provider else "",
        "service_name": appointment.service.name if appointment.service else "",
        "date": appointment.appointment_date.isoformat(),
        "time": appointment.start_time.strftime("%H:%M"),
        "end_time": appointment.end_time.strftime("%H:%M"),
        "address": (provider.address if provider else None) or "",
        "amount": f"{appointment.price_cents / 100:.2f}",
        "refund_amount": f"{(appointment.refund_cents or 0) / 100:.2f}",
        "refund_percentage": appointment.refund_percentage or 0,
        "app_url": current_app.config.get("APP_URL", ""),
    }
    context["old_date"] = context["date"]
    context["old_time"] = context["time"]
    context.update(data)
    return context


def _record(
    user: User,
    appointment: Appointment,
    event_type: str,
    channel: str,
    locale: str,
    context: dict,
    scheduled_for: datetime,
) -> Notification:
    message = render(event_type, channel, locale, context)
    notification = Notification(
        user_id=user.user_id,
        appointment_id=appointment.appointment_id,
        event_type=event_type,
        channel=channel,
        locale=locale,
        destination=user.email if channel == "email" else user.phone,
        subject=message.subject,
        body_html=message.html,
        body_text=message.text,
        status="pending",
        attempts=0,
        scheduled_for=scheduled_for,
    )
    db.session.add(notification)
    return notification


def dispatch_notification(event: DomainEvent, now: datetime | None = None) -> list[Notification]:
    """Record one pending notification per channel the recipient has enabled."""
    if event.event_type not in EVENT_TYPES:
        current_app.logger.warning("Ignoring unknown notification event %r", event.event_type)
        return []

    now = utc_naive(now)
    appointment = event.appointment
    try:
        recipient = event.recipient or appointment.customer
        preferences = get_preferences(recipient.user_id)
        locale = resolve_locale(preferences.get("locale"), current_app.config.get("DEFAULT_LOCALE", "en"))
        context = message_context(appointment, event.data, recipient)
        created = [
            _record(recipient, appointment, event.event_type, channel, locale, context, now)
            for channel in channels_for(recipient, preferences)
        ]
        db.session.commit()
    except (SQLAlchemyError, KeyError) as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to record %s notifications for appointment %s",
            event.event_type,
            appointment.appointment_id,
            exc_info=exc,
        )
        return []
    return created


def schedule_reminders(appointment: Appointment, now: datetime | None = None) -> list[Notification]:
    """Queue the 24h and 2h reminders that still lie in the future."""
    now = utc_naive(now)
    try:
        customer = appointment.customer
        preferences = get_preferences(customer.user_id)
        locale = resolve_locale(preferences.get("locale"), current_app.config.get("DEFAULT_LOCALE", "en"))
        allowed = channels_for(customer, preferences)
        context = message_context(appointment)
        starts_at = appointment_start_utc(appointment)

        created = []
        for lead_time, channels, flag in REMINDER_SCHEDULE:
            if not preferences.get(flag, True):
                continue
            send_at = starts_at - lead_time
            if send_at <= now:
                continue
            for channel in channels:
                if channel in allowed:
                    created.append(
                        _record(customer, appointment, REMINDER_DUE, channel, locale, context, send_at)
                    )
        db.session.commit()
    except (SQLAlchemyError, KeyError) as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to schedule reminders for appointment %s", appointment.appointment_id, exc_info=exc
        )
        return []
    return created


def skip_pending_reminders(appointment_id: int) -> int:
    """Mark undelivered reminders of the appointment as skipped (caller commits)."""
    return (
        Notification.query.filter(
            Notification.appointment_id == appointment_id,
            Notification.event_type == REMINDER_DUE,
            Notification.status.in_(RETRYABLE_STATUSES),
        ).update({"status": "skipped"}, synchronize_session=False)
    )


def retry_delay(attempts: int) -> timedelta:
    base = current_app.config.get("NOTIFICATION_RETRY_BASE_SECONDS", 60)
    return timedelta(seconds=base * 2 ** max(attempts - 1, 0))


def _claim(notification: Notification) -> bool:
    """Take the next attempt of a notification; a concurrent sweep that got there first wins."""
    claimed = (
        Notification.query.filter(
            Notification.notification_id == notification.notification_id,
            Notification.attempts == notification.attempts,
            Notification.status.in_(RETRYABLE_STATUSES),
        ).update({"attempts": Notification.attempts + 1}, synchronize_session=False)
    )
    db.session.commit()
    return claimed == 1


def _transmit(notification: Notification) -> DeliveryResult:
    try:
        if notification.channel == "email":
            return send_email(
                notification.destination,
                notification.subject or "",
                notification.body_html,
                notification.body_text,
            )
        return send_sms(notification.destination, notification.body_text)
    except Exception as exc:  # noqa: BLE001
        current_app.logger.exception(
            "Transport error for notification %s", notification.notification_id, exc_info=exc
        )
        return DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)


def deliver(notification: Notification, now: datetime | None = None) -> bool:
    """Attempt delivery once and record the outcome. Returns True when sent."""
    now = utc_naive(now)
    try:
        if not _claim(notification):
            return False

        result = _transmit(notification)
        if result.success:
            notification.status = "sent"
            notification.delivery_id = result.delivery_id
            notification.sent_at = now
            notification.last_error = None
        else:
            notification.status = "failed"
            notification.last_error = result.error
            notification.scheduled_for = now + retry_delay(notification.attempts)
            current_app.logger.warning(
                "Notification %s attempt %s failed: %s",
                notification.notification_id,
                notification.attempts,
                result.error,
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to record delivery of notification %s", notification.notification_id, exc_info=exc
        )
        return False
    return result.success


def send_pending_notifications(now: datetime | None = None, batch_size: int | None = None) -> dict[str, int]:
    """Deliver due pending/failed notifications below the attempt limit."""
    now = utc_naive(now)
    config = current_app.config
    batch_size = batch_size or config.get("NOTIFICATION_BATCH_SIZE", 100)
    max_attempts = config.get("NOTIFICATION_MAX_ATTEMPTS", 5)

    due = (
        Notification.query.filter(
            Notification.status.in_(RETRYABLE_STATUSES),
            Notification.scheduled_for <= now,
            Notification.attempts < max_attempts,
        )
        .order_by(Notification.scheduled_for, Notification.notification_id)
        .limit(batch_size)
        .all()
    )

    summary = {"processed": len(due), "sent": 0, "failed": 0, "skipped": 0}
    for notification in due:
        appointment = notification.appointment
        if notification.event_type == REMINDER_DUE and (appointment is None or not appointment.is_active):
            notification.status = "skipped"
            db.session.commit()
            summary["skipped"] += 1
            continue
        if deliver(notification, now):
            summary["sent"] += 1
        else:
            summary["failed"] += 1

    current_app.logger.info(
        "Notification sweep: %(processed)s processed, %(sent)s sent, %(failed)s failed, %(skipped)s skipped",
        summary,
    )
    return summary
