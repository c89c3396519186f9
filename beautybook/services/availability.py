"""Availability filtering of candidate slots.

The filter functions are pure: they take already-loaded appointments and blocks
and a "now" value, so running them twice over the same input gives the same
answer. :func:`generate_slots` is the database-backed entry point shared by the
HTTP layer and anything else that needs a provider's open slots.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from ..errors import ProviderNotFound, ServiceInactive, ServiceNotFound
from ..extensions import db
from ..models import ACTIVE_STATUSES, Appointment, BlockedDate, Provider, Service, utc_now
from .time_grid import generate_time_grid, to_minutes, weekday_of

REASON_CONFLICT = "conflict"
REASON_BLOCKED = "blocked"
REASON_NOTICE = "notice"
REASON_ADVANCE = "advance"


@dataclass(frozen=True)
class SlotAvailability:
    time: time
    available: bool

    def to_dict(self) -> dict[str, object]:
        return {"time": self.time.strftime("%H:%M"), "available": self.available}


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open intervals ``[a_start, a_end)`` and ``[b_start, b_end)`` overlap."""
    return a_start < b_end and b_start < a_end


def slot_unavailable_reason(
    start: time,
    duration_minutes: int,
    *,
    target_date: date,
    appointments: Iterable,
    blocks: Iterable,
    buffer_minutes: int,
    min_notice_minutes: int,
    max_advance_days: int,
    now: datetime,
) -> str | None:
    """Return why a slot cannot be booked, or ``None`` when it is free.

    ``appointments`` are objects with ``start_time``/``end_time`` (the live
    bookings of that date) and optionally the ``buffer_minutes`` they were
    booked with; the larger of that and the current buffer applies. ``blocks``
    are :class:`BlockedDate`-like objects.
    ``now`` is naive local time of the provider.
    """
    slot_start = to_minutes(start)
    slot_end = slot_start + duration_minutes
    starts_at = datetime.combine(target_date, start)

    if starts_at < now + timedelta(minutes=min_notice_minutes):
        return REASON_NOTICE
    if starts_at > now + timedelta(days=max_advance_days):
        return REASON_ADVANCE

    for block in blocks:
        if block.blocked_on != target_date:
            continue
        if block.is_full_day:
            return REASON_BLOCKED
        if intervals_overlap(slot_start, slot_end, to_minutes(block.start_time), to_minutes(block.end_time)):
            return REASON_BLOCKED

    for appointment in appointments:
        booked_buffer = getattr(appointment, "buffer_minutes", None) or 0
        buffer = max(booked_buffer, buffer_minutes)
        booked_start = to_minutes(appointment.start_time) - buffer
        booked_end = to_minutes(appointment.end_time) + buffer
        if intervals_overlap(slot_start, slot_end, booked_start, booked_end):
            return REASON_CONFLICT

    return None


def filter_slots(
    candidates: Sequence[time],
    *,
    duration_minutes: int,
    target_date: date,
    appointments: Sequence,
    blocks: Sequence,
    buffer_minutes: int,
    min_notice_minutes: int,
    max_advance_days: int,
    now: datetime,
) -> list[SlotAvailability]:
    appointments = list(appointments)
    blocks = list(blocks)
    return [
        SlotAvailability(
            time=start,
            available=slot_unavailable_reason(
                start,
                duration_minutes,
                target_date=target_date,
                appointments=appointments,
                blocks=blocks,
                buffer_minutes=buffer_minutes,
                min_notice_minutes=min_notice_minutes,
                max_advance_days=max_advance_days,
                now=now,
            ) is None,
        )
        for start in candidates
    ]


def provider_timezone(provider: Provider):
    name = provider.timezone or "UTC"
    if name == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        current_app.logger.warning("Unknown timezone %r for provider %s, using UTC", name, provider.provider_id)
        return timezone.utc


def local_now(provider: Provider, now: datetime | None = None) -> datetime:
    """Current time as a naive datetime in the provider's timezone.

    A naive ``now`` is taken to be provider-local already.
    """
    now = now or utc_now()
    if now.tzinfo is None:
        return now
    return now.astimezone(provider_timezone(provider)).replace(tzinfo=None)


def get_provider(provider_id: int) -> Provider:
    provider = db.session.get(Provider, provider_id)
    if provider is None:
        raise ProviderNotFound()
    return provider


def get_bookable_service(provider: Provider, service_id: int) -> Service:
    service = db.session.get(Service, service_id) if service_id is not None else None
    if service is None or service.provider_id != provider.provider_id:
        raise ServiceNotFound()
    if not service.is_active:
        raise ServiceInactive()
    return service


def live_appointments(provider_id: int, target_date: date, exclude_id: int | None = None) -> list[Appointment]:
    query = Appointment.query.filter(
        Appointment.provider_id == provider_id,
        Appointment.appointment_date == target_date,
        Appointment.status.in_(ACTIVE_STATUSES),
    )
    if exclude_id is not None:
        query = query.filter(Appointment.appointment_id != exclude_id)
    return query.order_by(Appointment.start_time).all()


def blocks_for(provider_id: int, target_date: date) -> list[BlockedDate]:
    return BlockedDate.query.filter_by(provider_id=provider_id, blocked_on=target_date).all()


def generate_slots(
    provider_id: int,
    target_date: date,
    service_id: int,
    now: datetime | None = None,
) -> list[SlotAvailability]:
    """All candidate slots of ``target_date`` for the service, each marked available or not."""
    provider = get_provider(provider_id)
    service = get_bookable_service(provider, service_id)

    rule = provider.hours_for_weekday(weekday_of(target_date))
    candidates = generate_time_grid(rule, service.duration_minutes)
    if not candidates:
        return []

    return filter_slots(
        candidates,
        duration_minutes=service.duration_minutes,
        target_date=target_date,
        appointments=live_appointments(provider.provider_id, target_date),
        blocks=blocks_for(provider.provider_id, target_date),
        buffer_minutes=provider.buffer_minutes,
        min_notice_minutes=provider.min_notice_minutes,
        max_advance_days=provider.max_advance_days,
        now=local_now(provider, now),
    )
