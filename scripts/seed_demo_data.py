#!/usr/bin/env python3
"""
Workshop Enrollment Platform — Demo Data Seed Script.

Creates a handful of published workshops (one small and waitlisted, one
with pricing tiers, one unlimited) so the cart, checkout and waitlist
flows can be exercised locally against the gateway's test mode.

Usage:
    python scripts/seed_demo_data.py
    python scripts/seed_demo_data.py --append
    python scripts/seed_demo_data.py --verbose
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

sys.path.insert(0, ".")

from app import create_app
from app.models import db
from app.models.cart import Cart, CartItem
from app.models.enrollment import Account, Enrollment
from app.models.ledger import ProcessedEvent
from app.models.notification import NotificationRequest
from app.models.waitlist import WaitlistEntry
from app.models.workshop import PricingOption, Workshop

_START = datetime.now(timezone.utc).replace(hour=10, minute=0, second=0, microsecond=0) + timedelta(days=14)

WORKSHOPS = [
    {
        "title": "Wheel Throwing for Beginners",
        "capacity": 2,
        "waitlist_enabled": True,
        "base_price": "85.00",
        "location": "Studio A",
        "days": 0,
        "options": [],
    },
    {
        "title": "Glaze Chemistry",
        "capacity": 12,
        "waitlist_enabled": True,
        "base_price": "120.00",
        "location": "Lab",
        "days": 7,
        "options": [
            ("standard", "Standard", "120.00", True),
            ("early-bird", "Early bird", "95.00", False),
            ("member", "Guild member", "80.00", False),
        ],
    },
    {
        "title": "Open Studio Evening",
        "capacity": 0,
        "waitlist_enabled": False,
        "base_price": "15.00",
        "location": "Studio B",
        "days": 3,
        "options": [],
    },
]


def _clear(verbose):
    for model in (NotificationRequest, ProcessedEvent, CartItem, Cart, WaitlistEntry,
                  Enrollment, Account, PricingOption, Workshop):
        count = model.query.delete()
        if verbose:
            print(f"   cleared {count:>4} {model.__tablename__}")
    db.session.commit()


def seed(append=False, verbose=False):
    if not append:
        print("🧹 Clearing existing enrollment data...")
        _clear(verbose)

    print("🏺 Seeding workshops...")
    for data in WORKSHOPS:
        starts_at = _START + timedelta(days=data["days"])
        workshop = Workshop(
            title=data["title"],
            capacity=data["capacity"],
            waitlist_enabled=data["waitlist_enabled"],
            base_price=Decimal(data["base_price"]),
            location=data["location"],
            starts_at=starts_at,
            ends_at=starts_at + timedelta(hours=3),
        )
        for position, (option_id, label, price, is_default) in enumerate(data["options"]):
            workshop.pricing_options.append(PricingOption(
                option_id=option_id, label=label, price=Decimal(price),
                is_default=is_default, position=position,
            ))
        db.session.add(workshop)
        db.session.flush()
        if verbose:
            print(f"   #{workshop.id} {workshop.title} (capacity={workshop.capacity or 'unlimited'})")
    db.session.commit()
    print(f"✅ {Workshop.query.count()} workshops ready.")


def main():
    parser = argparse.ArgumentParser(description="Seed demo workshops")
    parser.add_argument("--append", action="store_true", help="Keep existing rows")
    parser.add_argument("--verbose", action="store_true", help="Print each row")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        db.create_all()
        seed(append=args.append, verbose=args.verbose)


if __name__ == "__main__":
    main()
