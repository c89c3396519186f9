"""pytest fixtures: an app on an in-memory database and a seeded provider."""
from __future__ import annotations

import sys
from datetime import date, datetime, time, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure the project root is available on sys.path so tests can import the package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from beautybook import create_app  # noqa: E402
from beautybook.auth import build_token  # noqa: E402
from beautybook.config import TestingConfig  # noqa: E402
from beautybook.extensions import db  # noqa: E402
from beautybook.models import Appointment, Provider, Service, SlotClaim, User, WorkingHours  # noqa: E402

# 2030-01-07 is a Monday; "now" for service-level tests is the Tuesday before.
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 9, 0)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(app, user_id: int, role: str = "customer") -> dict[str, str]:
    with app.app_context():
        return {"Authorization": f"Bearer {build_token({'user_id': user_id, 'role': role})}"}


def next_weekday(weekday: int, min_days: int = 2) -> date:
    """First date at least ``min_days`` from today that falls on ``weekday``."""
    candidate = date.today() + timedelta(days=min_days)
    while candidate.weekday() != weekday:
        candidate += timedelta(days=1)
    return candidate


def seed_salon(buffer_minutes: int = 15, auto_confirm: bool = False) -> SimpleNamespace:
    """Provider open Monday-Saturday 09:00-18:00 with two services. Call inside an app context."""
    owner = User(name="Olivia Owner", email="owner@example.com", role="provider")
    customer = User(name="Casey Customer", email="casey@example.com", role="customer", phone="+15555550100")
    other = User(name="Drew Other", email="drew@example.com", role="customer")
    db.session.add_all([owner, customer, other])
    db.session.flush()

    provider = Provider(
        owner_id=owner.user_id,
        name="Glow Studio",
        timezone="UTC",
        address="1 Main St",
        buffer_minutes=buffer_minutes,
        min_notice_minutes=120,
        max_advance_days=90,
        auto_confirm=auto_confirm,
    )
    db.session.add(provider)
    db.session.flush()

    for day in range(6):
        db.session.add(
            WorkingHours(
                provider_id=provider.provider_id,
                day_of_week=day,
                open_time=time(9, 0),
                close_time=time(18, 0),
            )
        )
    db.session.add(WorkingHours(provider_id=provider.provider_id, day_of_week=6, is_closed=True))

    haircut = Service(
        provider_id=provider.provider_id,
        name="Classic Haircut",
        category="hair",
        price_cents=5000,
        duration_minutes=60,
    )
    manicure = Service(
        provider_id=provider.provider_id,
        name="Gel Manicure",
        category="nails",
        price_cents=3000,
        duration_minutes=30,
    )
    db.session.add_all([haircut, manicure])
    db.session.commit()

    return SimpleNamespace(
        owner_id=owner.user_id,
        customer_id=customer.user_id,
        other_id=other.user_id,
        provider_id=provider.provider_id,
        haircut_id=haircut.service_id,
        manicure_id=manicure.service_id,
    )


def add_appointment(
    ids: SimpleNamespace,
    on: date,
    start: time,
    duration: int = 60,
    status: str = "confirmed",
    service_id: int | None = None,
    key: str | None = None,
    staff_id: int | None = None,
    buffer_minutes: int = 15,
    payment_reference: str | None = None,
) -> int:
    """Insert an appointment directly, claims included. Call inside an app context."""
    starts = datetime.combine(on, start)
    ends = starts + timedelta(minutes=duration)
    appointment = Appointment(
        provider_id=ids.provider_id,
        service_id=service_id or ids.haircut_id,
        customer_id=ids.customer_id,
        staff_id=staff_id,
        appointment_date=on,
        start_time=start,
        end_time=ends.time(),
        duration_minutes=duration,
        price_cents=5000,
        buffer_minutes=buffer_minutes,
        status=status,
        payment_status="authorized" if payment_reference else "pending",
        payment_reference=payment_reference,
        idempotency_key=key or f"seed-{on.isoformat()}-{start.strftime('%H%M')}-{status}",
    )
    db.session.add(appointment)
    db.session.flush()
    if status in ("scheduled", "confirmed"):
        first = start.hour * 60 + start.minute
        for minute in range(first, first + duration + buffer_minutes):
            db.session.add(
                SlotClaim(
                    provider_id=ids.provider_id,
                    appointment_id=appointment.appointment_id,
                    claim_date=on,
                    minute=minute,
                )
            )
    db.session.commit()
    return appointment.appointment_id


@pytest.fixture
def salon(app):
    with app.app_context():
        return seed_salon()
