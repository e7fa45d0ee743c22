"""Seed the database with a demo venue.

Run with: python -m scripts.seed
Creates the subscription plans, one owner on the Professional plan with a
badminton venue and two courts, a test customer, and a week of slots.
"""

import asyncio
from datetime import timedelta

from sqlalchemy import select

from courtslot.core.clock import local_today
from courtslot.core.database import async_session_factory, engine
from courtslot.models import Base, Court, Plan, Sport, Subscription, SubscriptionStatus, User, UserRole, Venue
from courtslot.services.slot_ledger import generate_day_slots

# Prices in paise
PLANS = [
    {
        "name": "Starter",
        "price_paise": 0,
        "duration_days": 30,
        "max_venues": 1,
        "max_courts": 2,
        "max_bookings": 50,
        "max_messages": 100,
        "features": [],
    },
    {
        "name": "Professional",
        "price_paise": 99_900,
        "duration_days": 30,
        "max_venues": 3,
        "max_courts": 10,
        "max_bookings": 500,
        "max_messages": 1000,
        "features": ["autoConfirmation"],
    },
    {
        "name": "Enterprise",
        "price_paise": 299_900,
        "duration_days": 30,
        "max_venues": 20,
        "max_courts": 50,
        "max_bookings": 0,
        "max_messages": 0,
        "is_unlimited_bookings": True,
        "is_unlimited_messages": True,
        "features": ["autoConfirmation", "aiInsights"],
    },
]

SLOT_DAYS = 7


async def seed():
    # Create tables (in dev; production uses Alembic migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        result = await db.execute(select(Plan).where(Plan.name == "Professional"))
        if result.scalar_one_or_none():
            print("Database already seeded - skipping.")
            return

        plans = {}
        for plan_data in PLANS:
            plan = Plan(**plan_data)
            db.add(plan)
            plans[plan.name] = plan
        await db.flush()

        owner = User(
            name="Demo Owner",
            email="owner@example.com",
            phone="9000000001",
            role=UserRole.OWNER,
            is_phone_verified=True,
            is_email_verified=True,
        )
        customer = User(
            name="Demo Customer",
            email="customer@example.com",
            phone="9000000002",
            role=UserRole.CUSTOMER,
            is_phone_verified=True,
        )
        db.add_all([owner, customer])
        await db.flush()

        today = local_today()
        professional = plans["Professional"]
        db.add(Subscription(
            owner_id=owner.id,
            plan_id=professional.id,
            start_date=today,
            end_date=today + timedelta(days=professional.duration_days),
            status=SubscriptionStatus.ACTIVE,
        ))

        sport = Sport(name="Badminton")
        db.add(sport)
        await db.flush()

        venue = Venue(owner_id=owner.id, name="Smash Arena", city="Bengaluru", address="12 Court Road")
        db.add(venue)
        await db.flush()

        courts = [
            Court(venue_id=venue.id, sport_id=sport.id, name=f"Court {n}", price_paise=60_000)
            for n in (1, 2)
        ]
        db.add_all(courts)
        await db.flush()

        total_slots = 0
        for court in courts:
            for offset in range(SLOT_DAYS):
                slots = await generate_day_slots(db, owner.id, court.id, today + timedelta(days=offset))
                total_slots += len(slots)

        await db.commit()

        print(f"Seeded: {venue.name}")
        print(f"  {len(PLANS)} plans")
        print(f"  {len(courts)} courts, {total_slots} slots over {SLOT_DAYS} days")
        print(f"  owner id {owner.id} ({owner.email}), customer id {customer.id} ({customer.email})")


if __name__ == "__main__":
    asyncio.run(seed())
