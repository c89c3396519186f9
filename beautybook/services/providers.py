"""Provider-side management: hours, blocks, booking settings, refund tiers, services and staff."""
from __future__ import annotations

from flask import current_app

from ..errors import Forbidden, InvalidInput, NotFound, ServiceNotFound, StaffNotFound
from ..extensions import db
from ..models import BlockedDate, CancellationTier, Provider, Service, StaffMember, WorkingHours
from .availability import get_provider
from .time_grid import parse_date, parse_time_of_day

# (min, max) accepted for each numeric booking setting
BOOKING_SETTING_LIMITS = {
    "buffer_minutes": (0, 240),
    "min_notice_minutes": (0, 7 * 24 * 60),
    "max_advance_days": (1, 365),
}


def require_owner(provider_id: int, user_id: int | None) -> Provider:
    provider = get_provider(provider_id)
    if user_id is None or provider.owner_id != user_id:
        raise Forbidden("Only the provider owner can manage this provider")
    return provider


def _int_field(payload: dict, field: str, minimum: int, maximum: int | None = None) -> int:
    value = payload.get(field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{field} must be an integer", field=field)
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f"at least {minimum}"
        raise InvalidInput(f"{field} must be {bound}", field=field)
    return value


def _bool_field(payload: dict, field: str) -> bool:
    value = payload.get(field)
    if not isinstance(value, bool):
        raise InvalidInput(f"{field} must be true or false", field=field)
    return value


def _text_field(payload: dict, field: str, max_length: int, required: bool = False) -> str | None:
    value = payload.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise InvalidInput(f"{field} is required", field=field)
        return None
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string", field=field)
    value = value.strip()
    if len(value) > max_length:
        raise InvalidInput(f"{field} must be at most {max_length} characters", field=field)
    return value


def replace_working_hours(provider: Provider, rules) -> list[WorkingHours]:
    """Replace the weekly schedule. Weekdays not listed are closed."""
    if not isinstance(rules, list):
        raise InvalidInput("working_hours must be a list")

    rows = []
    seen = set()
    for rule in rules:
        if not isinstance(rule, dict):
            raise InvalidInput("Each working hours entry must be an object")
        day = _int_field(rule, "day_of_week", 0, 6)
        if day in seen:
            raise InvalidInput(f"day_of_week {day} appears more than once", field="day_of_week")
        seen.add(day)

        if rule.get("is_closed"):
            rows.append(WorkingHours(provider_id=provider.provider_id, day_of_week=day, is_closed=True))
            continue

        open_time = parse_time_of_day(rule.get("open_time"), "open_time")
        close_time = parse_time_of_day(rule.get("close_time"), "close_time")
        if open_time >= close_time:
            raise InvalidInput("open_time must be before close_time", day_of_week=day)
        rows.append(
            WorkingHours(
                provider_id=provider.provider_id,
                day_of_week=day,
                open_time=open_time,
                close_time=close_time,
                is_closed=False,
            )
        )

    WorkingHours.query.filter_by(provider_id=provider.provider_id).delete(synchronize_session=False)
    db.session.expire(provider, ["working_hours"])
    db.session.add_all(rows)
    db.session.commit()
    return sorted(rows, key=lambda row: row.day_of_week)


def add_blocked_date(provider: Provider, payload: dict) -> BlockedDate:
    blocked_on = parse_date(payload.get("date"), "date")
    start_raw, end_raw = payload.get("start_time"), payload.get("end_time")
    if (start_raw is None) != (end_raw is None):
        raise InvalidInput("start_time and end_time must be given together, or neither for a full day")

    start_time = end_time = None
    if start_raw is not None:
        start_time = parse_time_of_day(start_raw, "start_time")
        end_time = parse_time_of_day(end_raw, "end_time")
        if start_time >= end_time:
            raise InvalidInput("start_time must be before end_time")

    block = BlockedDate(
        provider_id=provider.provider_id,
        blocked_on=blocked_on,
        start_time=start_time,
        end_time=end_time,
        reason=_text_field(payload, "reason", 255),
    )
    db.session.add(block)
    db.session.commit()
    current_app.logger.info("Provider %s blocked %s", provider.provider_id, blocked_on.isoformat())
    return block


def remove_blocked_date(provider: Provider, blocked_date_id: int) -> None:
    block = db.session.get(BlockedDate, blocked_date_id)
    if block is None or block.provider_id != provider.provider_id:
        raise NotFound("Blocked date not found")
    db.session.delete(block)
    db.session.commit()


def update_booking_settings(provider: Provider, payload: dict) -> Provider:
    if not isinstance(payload, dict) or not payload:
        raise InvalidInput("No booking settings provided")

    updates = {}
    for field, (minimum, maximum) in BOOKING_SETTING_LIMITS.items():
        if field in payload:
            updates[field] = _int_field(payload, field, minimum, maximum)
    if "auto_confirm" in payload:
        updates["auto_confirm"] = _bool_field(payload, "auto_confirm")
    if not updates:
        raise InvalidInput("No recognised booking settings provided")

    for field, value in updates.items():
        setattr(provider, field, value)
    db.session.commit()
    return provider


def replace_cancellation_tiers(provider: Provider, tiers) -> list[CancellationTier]:
    """Replace the refund tiers; an empty list restores the default policy."""
    if not isinstance(tiers, list):
        raise InvalidInput("tiers must be a list")

    rows = []
    seen = set()
    for tier in tiers:
        if not isinstance(tier, dict):
            raise InvalidInput("Each tier must be an object")
        hours_before = tier.get("hours_before")
        if isinstance(hours_before, bool) or not isinstance(hours_before, (int, float)) or hours_before < 0:
            raise InvalidInput("hours_before must be a non-negative number", field="hours_before")
        if hours_before in seen:
            raise InvalidInput(f"Duplicate tier threshold {hours_before}", field="hours_before")
        seen.add(hours_before)
        rows.append(
            CancellationTier(
                provider_id=provider.provider_id,
                hours_before=float(hours_before),
                refund_percentage=_int_field(tier, "refund_percentage", 0, 100),
            )
        )

    CancellationTier.query.filter_by(provider_id=provider.provider_id).delete(synchronize_session=False)
    db.session.expire(provider, ["cancellation_tiers"])
    db.session.add_all(rows)
    db.session.commit()
    return sorted(rows, key=lambda row: row.hours_before, reverse=True)


def _apply_service_fields(service: Service, payload: dict, creating: bool) -> None:
    if creating or "name" in payload:
        service.name = _text_field(payload, "name", 150, required=True)
    if "description" in payload:
        service.description = _text_field(payload, "description", 5000)
    if "category" in payload:
        service.category = _text_field(payload, "category", 100)
    if creating or "price_cents" in payload:
        service.price_cents = _int_field(payload, "price_cents", 1)
    if creating or "duration_minutes" in payload:
        service.duration_minutes = _int_field(payload, "duration_minutes", 1, 24 * 60 - 1)
    if "is_active" in payload:
        service.is_active = _bool_field(payload, "is_active")


def create_service(provider: Provider, payload: dict) -> Service:
    service = Service(provider_id=provider.provider_id, is_active=True)
    _apply_service_fields(service, payload, creating=True)
    db.session.add(service)
    db.session.commit()
    return service


def update_service(provider: Provider, service_id: int, payload: dict) -> Service:
    """Existing appointments keep their duration and price snapshots."""
    service = db.session.get(Service, service_id)
    if service is None or service.provider_id != provider.provider_id:
        raise ServiceNotFound()
    _apply_service_fields(service, payload, creating=False)
    db.session.commit()
    return service


def _specialties(payload: dict) -> list[str]:
    value = payload.get("specialties") or []
    if not isinstance(value, list) or not all(isinstance(tag, str) for tag in value):
        raise InvalidInput("specialties must be a list of strings", field="specialties")
    return [tag.strip() for tag in value if tag.strip()]


def _apply_staff_fields(staff: StaffMember, payload: dict, creating: bool) -> None:
    if creating or "name" in payload:
        staff.name = _text_field(payload, "name", 100, required=True)
    if "title" in payload:
        staff.title = _text_field(payload, "title", 100)
    if creating or "specialties" in payload:
        staff.specialties = _specialties(payload)
    if "is_active" in payload:
        staff.is_active = _bool_field(payload, "is_active")
    if "is_default" in payload:
        staff.is_default = _bool_field(payload, "is_default")
    if "user_id" in payload:
        user_id = payload.get("user_id")
        if user_id is not None and (isinstance(user_id, bool) or not isinstance(user_id, int)):
            raise InvalidInput("user_id must be an integer", field="user_id")
        staff.user_id = user_id


def create_staff(provider: Provider, payload: dict) -> StaffMember:
    staff = StaffMember(provider_id=provider.provider_id, is_active=True, is_default=False)
    _apply_staff_fields(staff, payload, creating=True)
    db.session.add(staff)
    db.session.commit()
    return staff


def update_staff(provider: Provider, staff_id: int, payload: dict) -> StaffMember:
    staff = db.session.get(StaffMember, staff_id)
    if staff is None or staff.provider_id != provider.provider_id:
        raise StaffNotFound()
    _apply_staff_fields(staff, payload, creating=False)
    db.session.commit()
    return staff
