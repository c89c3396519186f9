"""Tests for the availability filter and slot generation."""
from __future__ import annotations

from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from conftest import MONDAY, NOW, add_appointment
from beautybook.errors import ProviderNotFound, ServiceInactive, ServiceNotFound
from beautybook.extensions import db
from beautybook.models import BlockedDate, Service
from beautybook.services.availability import (
    REASON_ADVANCE,
    REASON_BLOCKED,
    REASON_CONFLICT,
    REASON_NOTICE,
    filter_slots,
    generate_slots,
    intervals_overlap,
    slot_unavailable_reason,
)
from beautybook.services.time_grid import generate_time_grid

BOOKED = SimpleNamespace(start_time=time(10, 0), end_time=time(11, 0))
RULE = SimpleNamespace(open_time=time(9, 0), close_time=time(18, 0), is_closed=False)


def _reason(start, duration=30, appointments=(BOOKED,), blocks=(), now=NOW, buffer_minutes=15):
    return slot_unavailable_reason(
        start,
        duration,
        target_date=MONDAY,
        appointments=appointments,
        blocks=blocks,
        buffer_minutes=buffer_minutes,
        min_notice_minutes=120,
        max_advance_days=90,
        now=now,
    )


def test_half_open_overlap() -> None:
    assert intervals_overlap(0, 10, 5, 15)
    assert not intervals_overlap(0, 10, 10, 20)
    assert not intervals_overlap(10, 20, 0, 10)


def test_buffer_extends_existing_appointment_on_both_sides() -> None:
    assert _reason(time(10, 45)) == REASON_CONFLICT
    assert _reason(time(11, 0)) == REASON_CONFLICT
    assert _reason(time(9, 30)) == REASON_CONFLICT
    assert _reason(time(11, 15)) is None
    assert _reason(time(9, 0)) is None


def test_without_buffer_back_to_back_is_allowed() -> None:
    assert _reason(time(11, 0), buffer_minutes=0) is None
    assert _reason(time(9, 30), buffer_minutes=0) is None


def test_notice_and_advance_windows() -> None:
    assert _reason(time(9, 0), appointments=(), now=datetime(2030, 1, 7, 8, 0)) == REASON_NOTICE
    assert _reason(time(10, 0), appointments=(), now=datetime(2030, 1, 7, 8, 0)) is None
    assert _reason(time(9, 0), appointments=(), now=datetime(2029, 10, 1, 9, 0)) == REASON_ADVANCE


def test_partial_and_full_day_blocks() -> None:
    lunch = SimpleNamespace(
        blocked_on=MONDAY, start_time=time(12, 0), end_time=time(13, 0), is_full_day=False
    )
    holiday = SimpleNamespace(blocked_on=MONDAY, start_time=None, end_time=None, is_full_day=True)
    elsewhere = SimpleNamespace(blocked_on=date(2030, 1, 8), start_time=None, end_time=None, is_full_day=True)

    assert _reason(time(12, 30), appointments=(), blocks=(lunch,)) == REASON_BLOCKED
    assert _reason(time(11, 30), appointments=(), blocks=(lunch,)) is None
    assert _reason(time(15, 0), appointments=(), blocks=(holiday,)) == REASON_BLOCKED
    assert _reason(time(15, 0), appointments=(), blocks=(elsewhere,)) is None


def test_filter_is_idempotent() -> None:
    candidates = generate_time_grid(RULE, 30)
    kwargs = dict(
        duration_minutes=30,
        target_date=MONDAY,
        appointments=[BOOKED],
        blocks=[],
        buffer_minutes=15,
        min_notice_minutes=120,
        max_advance_days=90,
        now=NOW,
    )

    first = filter_slots(candidates, **kwargs)
    second = filter_slots(candidates, **kwargs)

    assert first == second
    unavailable = [slot.time for slot in first if not slot.available]
    assert unavailable == [time(9, 30), time(10, 0), time(10, 30), time(11, 0)]


def test_generate_slots_reads_live_bookings(app, salon) -> None:
    with app.app_context():
        add_appointment(salon, MONDAY, time(10, 0))
        add_appointment(salon, MONDAY, time(14, 0), status="cancelled")
        db.session.add(
            BlockedDate(provider_id=salon.provider_id, blocked_on=MONDAY, start_time=time(16, 0), end_time=time(18, 0))
        )
        db.session.commit()

        slots = {slot.time: slot.available for slot in generate_slots(salon.provider_id, MONDAY, salon.manicure_id, now=NOW)}

    assert slots[time(9, 0)] is True
    assert slots[time(10, 30)] is False
    assert slots[time(11, 30)] is True
    # cancelled appointments free their time
    assert slots[time(14, 0)] is True
    assert slots[time(16, 0)] is False
    assert max(slots) == time(17, 30)


def test_generate_slots_closed_day(app, salon) -> None:
    sunday = date(2030, 1, 13)
    with app.app_context():
        assert generate_slots(salon.provider_id, sunday, salon.haircut_id, now=NOW) == []


def test_generate_slots_errors(app, salon) -> None:
    with app.app_context():
        with pytest.raises(ProviderNotFound):
            generate_slots(9999, MONDAY, salon.haircut_id, now=NOW)
        with pytest.raises(ServiceNotFound):
            generate_slots(salon.provider_id, MONDAY, 9999, now=NOW)

        db.session.get(Service, salon.haircut_id).is_active = False
        db.session.commit()
        with pytest.raises(ServiceInactive):
            generate_slots(salon.provider_id, MONDAY, salon.haircut_id, now=NOW)


def test_generate_slots_uses_provider_timezone(app, salon) -> None:
    from beautybook.models import Provider

    with app.app_context():
        db.session.get(Provider, salon.provider_id).timezone = "America/New_York"
        db.session.commit()

        # 13:30 UTC is 08:30 in New York; with two hours notice 10:30 local is the first open slot.
        aware_now = datetime.fromisoformat("2030-01-07T13:30:00+00:00")
        slots = generate_slots(salon.provider_id, MONDAY, salon.manicure_id, now=aware_now)

    first_open = next(slot.time for slot in slots if slot.available)
    assert first_open == time(10, 30)


def test_buffer_booked_with_outlives_a_smaller_current_buffer() -> None:
    booked = SimpleNamespace(start_time=time(10, 0), end_time=time(11, 0), buffer_minutes=15)

    assert _reason(time(11, 0), appointments=(booked,), buffer_minutes=0) == REASON_CONFLICT
    assert _reason(time(11, 15), appointments=(booked,), buffer_minutes=0) is None
    # a larger current buffer still wins
    assert _reason(time(11, 15), appointments=(booked,), buffer_minutes=30) == REASON_CONFLICT
