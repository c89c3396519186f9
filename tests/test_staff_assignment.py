"""Tests for staff assignment strategies."""
from __future__ import annotations

import random
from collections import Counter
from datetime import date, time

import pytest

from conftest import MONDAY, add_appointment
from beautybook.errors import Forbidden, InvalidInput, NoActiveStaff, StaffNotFound
from beautybook.extensions import db
from beautybook.models import Appointment, StaffMember
from beautybook.services.staff_assignment import (
    AssignmentStrategy,
    PendingAppointment,
    RosterEntry,
    assign_appointment,
    assign_balanced,
    assign_by_workload,
    assign_randomly,
    assign_skill_based,
    assign_staff,
    staff_metrics,
)

ROSTER = [
    RosterEntry(staff_id=1, specialties=("hair", "color")),
    RosterEntry(staff_id=2, specialties=("nails",)),
    RosterEntry(staff_id=3, specialties=(), is_default=True),
]


def _pending(count: int, name: str = "Haircut", category: str | None = None) -> list[PendingAppointment]:
    return [PendingAppointment(appointment_id=index, service_name=name, service_category=category) for index in range(1, count + 1)]


@pytest.mark.parametrize("count", [0, 1, 3, 7, 10])
def test_balanced_spreads_evenly(count) -> None:
    assignments = assign_balanced(_pending(count), ROSTER)
    per_staff = Counter(staff_id for _, staff_id in assignments)

    assert len(assignments) == count
    for entry in ROSTER:
        assert per_staff.get(entry.staff_id, 0) in (count // len(ROSTER), -(-count // len(ROSTER)))


def test_balanced_is_round_robin_in_order() -> None:
    assert assign_balanced(_pending(4), ROSTER) == [(1, 1), (2, 2), (3, 3), (4, 1)]


def test_skill_based_matches_category_or_name() -> None:
    appointments = [
        PendingAppointment(1, "Gel Manicure", "nails"),
        PendingAppointment(2, "Root Color", None),
        PendingAppointment(3, "Express Facial", "skin"),
    ]

    assert assign_skill_based(appointments, ROSTER) == [(1, 2), (2, 1), (3, 3)]


def test_skill_based_falls_back_to_first_member_without_a_default() -> None:
    roster = [RosterEntry(7, ("nails",)), RosterEntry(8, ("hair",))]
    assert assign_skill_based([PendingAppointment(1, "Massage", "body")], roster) == [(1, 7)]


def test_workload_prefers_least_loaded_with_ties_by_roster_order() -> None:
    roster = [RosterEntry(1, current_load=2), RosterEntry(2, current_load=0), RosterEntry(3, current_load=1)]

    assert assign_by_workload(_pending(4), roster) == [(1, 2), (2, 2), (3, 3), (4, 1)]


def test_random_is_reproducible_with_a_seed() -> None:
    first = assign_randomly(_pending(20), ROSTER, random.Random(42))
    second = assign_randomly(_pending(20), ROSTER, random.Random(42))

    assert first == second
    assert {staff_id for _, staff_id in first} <= {1, 2, 3}


@pytest.mark.parametrize(
    "value, expected",
    [
        ("balanced", AssignmentStrategy.BALANCED),
        ("skill-based", AssignmentStrategy.SKILL_BASED),
        ("skill_based", AssignmentStrategy.SKILL_BASED),
        ("availability", AssignmentStrategy.WORKLOAD),
        ("Workload", AssignmentStrategy.WORKLOAD),
        (AssignmentStrategy.RANDOM, AssignmentStrategy.RANDOM),
    ],
)
def test_strategy_parsing(value, expected) -> None:
    assert AssignmentStrategy.parse(value) is expected


@pytest.mark.parametrize("value", ["fastest", "", None])
def test_unknown_strategy(value) -> None:
    with pytest.raises(InvalidInput):
        AssignmentStrategy.parse(value)


def _add_staff(ids, name, specialties=(), is_active=True, is_default=False, user_id=None) -> int:
    staff = StaffMember(
        provider_id=ids.provider_id,
        name=name,
        specialties=list(specialties),
        is_active=is_active,
        is_default=is_default,
        user_id=user_id,
    )
    db.session.add(staff)
    db.session.commit()
    return staff.staff_id


def test_assign_staff_requires_an_active_roster(app, salon) -> None:
    with app.app_context():
        _add_staff(salon, "Former", is_active=False)
        add_appointment(salon, MONDAY, time(10, 0))

        with pytest.raises(NoActiveStaff):
            assign_staff(salon.provider_id, "balanced")


def test_assign_staff_assigns_each_appointment_once(app, salon) -> None:
    with app.app_context():
        avery = _add_staff(salon, "Avery", ["hair"])
        jordan = _add_staff(salon, "Jordan", ["nails"])
        _add_staff(salon, "Inactive", is_active=False)
        for hour in (9, 11, 13, 15):
            add_appointment(salon, MONDAY, time(hour, 0))
        add_appointment(salon, date(2030, 1, 8), time(9, 0), status="cancelled")

        result = assign_staff(salon.provider_id, "balanced")

        assert result.assigned_count == 4
        assert Counter(item["staff_id"] for item in result.assignments) == {avery: 2, jordan: 2}
        assert Appointment.query.filter(Appointment.staff_id.is_(None)).count() == 1

        again = assign_staff(salon.provider_id, "workload")
        assert again.assigned_count == 0


def test_workload_counts_existing_assignments(app, salon) -> None:
    with app.app_context():
        busy = _add_staff(salon, "Busy")
        free = _add_staff(salon, "Free")
        add_appointment(salon, MONDAY, time(9, 0), staff_id=busy)
        add_appointment(salon, MONDAY, time(11, 0), staff_id=busy)
        add_appointment(salon, MONDAY, time(13, 0))
        add_appointment(salon, MONDAY, time(15, 0))

        result = assign_staff(salon.provider_id, "availability")

        assert [item["staff_id"] for item in result.assignments] == [free, free]


def test_manual_assignment(app, salon) -> None:
    with app.app_context():
        staff_id = _add_staff(salon, "Avery")
        inactive = _add_staff(salon, "Gone", is_active=False)
        appointment_id = add_appointment(salon, MONDAY, time(10, 0))

        with pytest.raises(Forbidden):
            assign_appointment(appointment_id, staff_id, salon.customer_id)
        with pytest.raises(StaffNotFound):
            assign_appointment(appointment_id, 9999, salon.owner_id)
        with pytest.raises(InvalidInput):
            assign_appointment(appointment_id, inactive, salon.owner_id)

        assert assign_appointment(appointment_id, staff_id, salon.owner_id).staff_id == staff_id
        assert assign_appointment(appointment_id, None, salon.owner_id).staff_id is None


def test_staff_metrics(app, salon) -> None:
    with app.app_context():
        staff_id = _add_staff(salon, "Avery")
        add_appointment(salon, MONDAY, time(9, 0), staff_id=staff_id, status="completed")
        add_appointment(salon, MONDAY, time(11, 0), staff_id=staff_id, status="completed")
        add_appointment(salon, MONDAY, time(13, 0), staff_id=staff_id, status="cancelled")
        add_appointment(salon, MONDAY, time(15, 0), staff_id=staff_id)
        add_appointment(salon, date(2030, 2, 4), time(9, 0), staff_id=staff_id, status="completed")

        metrics = staff_metrics(staff_id, date(2030, 1, 1), date(2030, 1, 31))

        assert metrics["appointment_count"] == 3
        assert metrics["completed_count"] == 2
        assert metrics["cancelled_count"] == 1
        assert metrics["revenue_cents"] == 10000
