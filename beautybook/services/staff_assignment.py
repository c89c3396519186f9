"""
Staff Assignment Engine.

Each strategy is a pure function ``(appointments, roster, rng) -> [(appointment_id,
staff_id)]`` over plain dataclasses, so it can be exercised without a database.
:func:`assign_staff` loads the inputs, serializes on the provider row and
writes the result back with conditional updates.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Sequence

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import OperationalError

from ..errors import (
    BookingError,
    Forbidden,
    InvalidInput,
    InvalidStateTransition,
    NoActiveStaff,
    ProviderNotFound,
    StaffNotFound,
    Timeout,
)
from ..extensions import db
from ..models import ACTIVE_STATUSES, Appointment, Provider, StaffMember
from .appointments import get_appointment


class AssignmentStrategy(str, Enum):
    BALANCED = "balanced"
    SKILL_BASED = "skill-based"
    WORKLOAD = "workload"
    RANDOM = "random"

    @classmethod
    def parse(cls, value: "str | AssignmentStrategy") -> "AssignmentStrategy":
        if isinstance(value, cls):
            return value
        name = (value or "").strip().lower().replace("_", "-")
        if name == "availability":
            return cls.WORKLOAD
        try:
            return cls(name)
        except ValueError:
            choices = ", ".join(strategy.value for strategy in cls)
            raise InvalidInput(f"strategy must be one of: {choices}") from None


@dataclass(frozen=True)
class PendingAppointment:
    appointment_id: int
    service_name: str
    service_category: str | None = None


@dataclass(frozen=True)
class RosterEntry:
    staff_id: int
    specialties: tuple[str, ...] = ()
    is_default: bool = False
    current_load: int = 0


Assignment = tuple[int, int]


def assign_balanced(appointments: Sequence[PendingAppointment], roster: Sequence[RosterEntry], rng=None) -> list[Assignment]:
    return [
        (appointment.appointment_id, roster[index % len(roster)].staff_id)
        for index, appointment in enumerate(appointments)
    ]


def _service_terms(appointment: PendingAppointment) -> set[str]:
    terms = set(appointment.service_name.lower().split())
    if appointment.service_category:
        terms.add(appointment.service_category.strip().lower())
    return terms


def specialty_matches(entry: RosterEntry, appointment: PendingAppointment) -> bool:
    terms = _service_terms(appointment)
    return any(tag.strip().lower() in terms for tag in entry.specialties)


def assign_skill_based(appointments: Sequence[PendingAppointment], roster: Sequence[RosterEntry], rng=None) -> list[Assignment]:
    """First roster member with a matching specialty, else the default generalist, else the first member."""
    fallback = next((entry for entry in roster if entry.is_default), roster[0])
    assignments = []
    for appointment in appointments:
        chosen = next((entry for entry in roster if specialty_matches(entry, appointment)), fallback)
        assignments.append((appointment.appointment_id, chosen.staff_id))
    return assignments


def assign_by_workload(appointments: Sequence[PendingAppointment], roster: Sequence[RosterEntry], rng=None) -> list[Assignment]:
    loads = [entry.current_load for entry in roster]
    assignments = []
    for appointment in appointments:
        index = min(range(len(roster)), key=lambda position: (loads[position], position))
        loads[index] += 1
        assignments.append((appointment.appointment_id, roster[index].staff_id))
    return assignments


def assign_randomly(appointments: Sequence[PendingAppointment], roster: Sequence[RosterEntry], rng=None) -> list[Assignment]:
    # Reproducible only when a seeded random.Random is passed in.
    rng = rng or random
    return [(appointment.appointment_id, rng.choice(roster).staff_id) for appointment in appointments]


STRATEGIES: dict[AssignmentStrategy, Callable[..., list[Assignment]]] = {
    AssignmentStrategy.BALANCED: assign_balanced,
    AssignmentStrategy.SKILL_BASED: assign_skill_based,
    AssignmentStrategy.WORKLOAD: assign_by_workload,
    AssignmentStrategy.RANDOM: assign_randomly,
}


@dataclass(frozen=True)
class AssignmentResult:
    strategy: AssignmentStrategy
    assigned_count: int
    assignments: list[dict[str, int]]

    def to_dict(self) -> dict[str, object]:
        return {
            "strategy": self.strategy.value,
            "assigned_count": self.assigned_count,
            "assignments": self.assignments,
        }


def _lock_provider(provider_id: int) -> Provider:
    provider = db.session.execute(
        db.select(Provider).filter_by(provider_id=provider_id).with_for_update()
    ).scalar_one_or_none()
    if provider is None:
        raise ProviderNotFound()
    return provider


def _active_roster(provider_id: int) -> list[StaffMember]:
    return (
        StaffMember.query.filter_by(provider_id=provider_id, is_active=True)
        .order_by(StaffMember.staff_id)
        .all()
    )


def _current_loads(provider_id: int, staff_ids: list[int]) -> dict[int, int]:
    rows = (
        db.session.query(Appointment.staff_id, func.count(Appointment.appointment_id))
        .filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.staff_id.in_(staff_ids),
        )
        .group_by(Appointment.staff_id)
        .all()
    )
    return {staff_id: count for staff_id, count in rows}


def assign_staff(provider_id: int, strategy, rng: random.Random | None = None) -> AssignmentResult:
    """Assign every unassigned live appointment of the provider using ``strategy``."""
    strategy = AssignmentStrategy.parse(strategy)
    try:
        _lock_provider(provider_id)
        staff = _active_roster(provider_id)
        if not staff:
            raise NoActiveStaff()

        pending = (
            Appointment.query.filter(
                Appointment.provider_id == provider_id,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.staff_id.is_(None),
            )
            .order_by(Appointment.appointment_date, Appointment.start_time, Appointment.appointment_id)
            .all()
        )
        loads = _current_loads(provider_id, [member.staff_id for member in staff])
        roster = [
            RosterEntry(
                staff_id=member.staff_id,
                specialties=tuple(member.specialties or ()),
                is_default=bool(member.is_default),
                current_load=loads.get(member.staff_id, 0),
            )
            for member in staff
        ]
        candidates = [
            PendingAppointment(
                appointment_id=appointment.appointment_id,
                service_name=appointment.service.name,
                service_category=appointment.service.category,
            )
            for appointment in pending
        ]

        assignments = []
        for appointment_id, staff_id in STRATEGIES[strategy](candidates, roster, rng):
            updated = (
                Appointment.query.filter(
                    Appointment.appointment_id == appointment_id,
                    Appointment.staff_id.is_(None),
                    Appointment.status.in_(ACTIVE_STATUSES),
                ).update({"staff_id": staff_id}, synchronize_session=False)
            )
            if updated:
                assignments.append({"appointment_id": appointment_id, "staff_id": staff_id})
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        raise Timeout() from exc
    except BookingError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Assigned %s appointments for provider %s using %s", len(assignments), provider_id, strategy.value
    )
    return AssignmentResult(strategy=strategy, assigned_count=len(assignments), assignments=assignments)


def assign_appointment(appointment_id: int, staff_id: int | None, actor_id: int | None) -> Appointment:
    """Manually assign (or with ``staff_id=None`` unassign) one appointment."""
    appointment = get_appointment(appointment_id)
    if actor_id is None or actor_id != appointment.provider.owner_id:
        raise Forbidden("Only the provider can assign staff")
    if not appointment.is_active:
        raise InvalidStateTransition(f"Cannot assign staff to an appointment with status '{appointment.status}'")

    if staff_id is not None:
        staff = db.session.get(StaffMember, staff_id)
        if staff is None or staff.provider_id != appointment.provider_id:
            raise StaffNotFound()
        if not staff.is_active:
            raise InvalidInput("Staff member is not active")

    appointment.staff_id = staff_id
    db.session.commit()
    return appointment


def staff_metrics(staff_id: int, start: date, end: date) -> dict[str, object]:
    """Appointment counts and completed revenue of a staff member for ``start``..``end`` inclusive."""
    staff = db.session.get(StaffMember, staff_id)
    if staff is None:
        raise StaffNotFound()
    if end < start:
        raise InvalidInput("end must not be before start")

    rows = (
        db.session.query(Appointment.status, func.count(Appointment.appointment_id), func.sum(Appointment.price_cents))
        .filter(
            Appointment.staff_id == staff_id,
            Appointment.appointment_date >= start,
            Appointment.appointment_date <= end,
        )
        .group_by(Appointment.status)
        .all()
    )
    by_status = {status: (count, revenue or 0) for status, count, revenue in rows}
    completed_count, revenue_cents = by_status.get("completed", (0, 0))

    return {
        "staff_id": staff_id,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "appointment_count": sum(count for status, (count, _) in by_status.items() if status != "cancelled"),
        "completed_count": completed_count,
        "cancelled_count": by_status.get("cancelled", (0, 0))[0],
        "no_show_count": by_status.get("no-show", (0, 0))[0],
        "revenue_cents": int(revenue_cents),
        "revenue_dollars": int(revenue_cents) / 100.0,
    }
