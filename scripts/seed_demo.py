#!/usr/bin/env python3
"""Seed a demo provider with hours, services, staff and a customer."""
import sys
from datetime import time
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from beautybook import create_app
from beautybook.auth import build_token
from beautybook.extensions import db
from beautybook.models import CancellationTier, Provider, Service, StaffMember, User, WorkingHours

SAMPLE_SERVICES = [
    {"name": "Classic Haircut", "category": "hair", "price_cents": 4500, "duration_minutes": 45},
    {"name": "Gel Manicure", "category": "nails", "price_cents": 3500, "duration_minutes": 60},
    {"name": "Express Facial", "category": "skin", "price_cents": 6000, "duration_minutes": 30},
]

SAMPLE_STAFF = [
    {"name": "Avery", "title": "Senior Stylist", "specialties": ["hair", "haircut"], "is_default": True},
    {"name": "Jordan", "title": "Nail Technician", "specialties": ["nails", "manicure"]},
    {"name": "Riley", "title": "Esthetician", "specialties": ["skin", "facial"]},
]


def seed_demo():
    """Create the demo records unless the owner account already exists."""
    app = create_app()

    with app.app_context():
        db.create_all()

        if User.query.filter_by(email="owner@beautybook.test").first():
            print("ℹ️  Demo data already present")
            return

        owner = User(name="Olivia Owner", email="owner@beautybook.test", role="provider")
        customer = User(name="Casey Customer", email="casey@beautybook.test", role="customer", phone="+15555550100")
        db.session.add_all([owner, customer])
        db.session.flush()

        provider = Provider(
            owner_id=owner.user_id,
            name="Glow Beauty Studio",
            timezone="America/New_York",
            address="123 Main St, Newark, NJ",
            buffer_minutes=15,
        )
        db.session.add(provider)
        db.session.flush()

        for day in range(7):
            if day == 6:
                db.session.add(WorkingHours(provider_id=provider.provider_id, day_of_week=day, is_closed=True))
            else:
                db.session.add(
                    WorkingHours(
                        provider_id=provider.provider_id,
                        day_of_week=day,
                        open_time=time(9, 0),
                        close_time=time(18, 0),
                    )
                )

        for hours_before, percentage in ((48, 100), (24, 50), (0, 0)):
            db.session.add(
                CancellationTier(provider_id=provider.provider_id, hours_before=hours_before, refund_percentage=percentage)
            )

        for data in SAMPLE_SERVICES:
            db.session.add(Service(provider_id=provider.provider_id, **data))
        for data in SAMPLE_STAFF:
            db.session.add(StaffMember(provider_id=provider.provider_id, **data))

        db.session.commit()

        print(f"✅ Seeded provider {provider.provider_id} ({provider.name})")
        print(f"   Owner token:    {build_token({'user_id': owner.user_id, 'role': 'provider'})}")
        print(f"   Customer token: {build_token({'user_id': customer.user_id, 'role': 'customer'})}")


if __name__ == "__main__":
    seed_demo()
