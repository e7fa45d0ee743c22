"""Shared test fixtures.

Tests run against a throwaway SQLite file. The URL has to be in the
environment before any courtslot module builds the engine, hence the
assignments above the imports.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="courtslot-tests-")
os.environ["CS_DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["CS_SECRET_KEY"] = "test-secret"

from datetime import date, timedelta  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from unittest.mock import AsyncMock, patch  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event, select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from courtslot.core.auth import create_access_token  # noqa: E402
from courtslot.core.clock import local_today  # noqa: E402
from courtslot.core.config import settings  # noqa: E402
from courtslot.core.database import async_session_factory, engine  # noqa: E402
from courtslot.main import app  # noqa: E402
from courtslot.models import (  # noqa: E402
    Base,
    Court,
    Plan,
    Slot,
    Sport,
    Subscription,
    SubscriptionStatus,
    User,
    UserRole,
    Venue,
)
from courtslot.services.slot_ledger import generate_day_slots  # noqa: E402

BOOKING_DAY = date(2024, 6, 1)  # A Saturday


@pytest.fixture(autouse=True)
async def _database():
    """Fresh schema for every test.

    The global engine is created at import time; disposing it first drops any
    pooled connection bound to a previous test's event loop.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def mock_email():
    """No SMTP server in tests: every outgoing email lands on this mock."""
    with patch("courtslot.services.notifications.send_email", new_callable=AsyncMock) as mock:
        yield mock


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def venue_setup(db):
    """One owner, one customer, one badminton court with a day of hourly slots on BOOKING_DAY."""
    owner = User(name="Asha Owner", email="owner@example.com", phone="9000000001", role=UserRole.OWNER)
    customer = User(name="Ravi Customer", email="ravi@example.com", phone="9000000002", role=UserRole.CUSTOMER)
    db.add_all([owner, customer])
    sport = Sport(name="Badminton")
    db.add(sport)
    await db.flush()

    venue = Venue(owner_id=owner.id, name="Smash Arena", city="Bengaluru")
    db.add(venue)
    await db.flush()

    court = Court(venue_id=venue.id, sport_id=sport.id, name="C1", price_paise=50_000)
    db.add(court)
    await db.flush()

    slots = await generate_day_slots(db, owner.id, court.id, BOOKING_DAY)
    await db.commit()

    return SimpleNamespace(
        owner=owner,
        customer=customer,
        sport=sport,
        venue=venue,
        court=court,
        slots={slot.start_time: slot for slot in slots},
    )


@pytest.fixture
def subscribe(db):
    """Factory: give an owner a current subscription on a new plan."""

    async def _subscribe(
        owner: User,
        features: list[str] | None = None,
        max_bookings: int = 100,
        max_messages: int = 100,
        bookings_count: int = 0,
        messages_count: int = 0,
        unlimited: bool = False,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        plan = Plan(
            name=f"Plan {owner.id}-{len(features or [])}-{max_bookings}",
            max_venues=2,
            max_courts=4,
            max_bookings=max_bookings,
            max_messages=max_messages,
            is_unlimited_bookings=unlimited,
            is_unlimited_messages=unlimited,
            features=features or [],
        )
        db.add(plan)
        await db.flush()

        today = local_today()
        subscription = Subscription(
            owner_id=owner.id,
            plan_id=plan.id,
            start_date=today - timedelta(days=1),
            end_date=today + timedelta(days=30),
            status=status,
            bookings_count=bookings_count,
            messages_count=messages_count,
        )
        db.add(subscription)
        await db.commit()
        return subscription

    return _subscribe


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(str(user.id), user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers


async def slot_statuses(slot_ids: list[int]) -> dict[int, str]:
    """Read slot statuses on a separate session, bypassing any identity map."""
    async with async_session_factory() as session:
        result = await session.execute(select(Slot.id, Slot.status).where(Slot.id.in_(slot_ids)))
        return {slot_id: status.value for slot_id, status in result.all()}


@pytest.fixture
def read_statuses():
    return slot_statuses


@pytest.fixture
async def deferred_sessions():
    """Sessions on a second engine that keeps the driver's own transaction handling.

    The shared engine starts every transaction with BEGIN IMMEDIATE, which runs
    writers strictly one after another. Here the driver only opens a
    transaction at the first write, so plain reads take no lock and concurrent
    sessions interleave. Code that reads a value and writes it back later can
    lose a race on this engine the same way it would on Postgres.
    """
    deferred_engine = create_async_engine(settings.database_url, connect_args={"timeout": 30})
    yield async_sessionmaker(deferred_engine, class_=AsyncSession, expire_on_commit=False)
    await deferred_engine.dispose()


@pytest.fixture
def sql_log():
    """Every SQL statement sent through the shared engine while the test runs."""
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(" ".join(statement.split()))

    event.listen(engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine.sync_engine, "before_cursor_execute", _record)
