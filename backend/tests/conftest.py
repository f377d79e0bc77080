"""
Pytest fixtures for the test database, catalog data, client, and identities.

Each test gets its own SQLite file. The engine starts every transaction with
BEGIN IMMEDIATE, so concurrent sessions in a test queue on the database lock
the way PostgreSQL transactions queue on row locks. Fixtures commit and close
their sessions so no test starts with a lock held.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./boxoffice_dev.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("BOOKING_RETRY_BACKOFF_SECONDS", "0.001")

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.security import create_access_token
from boxoffice.db.base import Base
from boxoffice.db.session import create_engine_for, get_db, get_session_factory
from boxoffice.main import app
from boxoffice.models import (
    ConcessionItem, LoyaltyReward, LoyaltySettings, PromoCode, Screen, SeatLayout, Showtime,
)
from boxoffice.services import inventory_service, loyalty_service
from boxoffice.services.notification_service import get_event_publisher

ORG_ID = 1
OTHER_ORG_ID = 2
CUSTOMER_ID = 100
OTHER_CUSTOMER_ID = 101
STAFF_ID = 900


class RecordingPublisher:
    """Stands in for Redis pub/sub; remembers what was published."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: list[tuple[str, dict]] = []

    async def publish(self, event_type: str, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("notification channel down")
        self.events.append((event_type, payload))

    def of_type(self, event_type: str) -> list[dict]:
        return [payload for kind, payload in self.events if kind == event_type]


@dataclass
class Catalog:
    screen_id: int
    showtime_id: int
    past_showtime_id: int
    cancelled_showtime_id: int
    popcorn_id: int
    soda_id: int
    other_org_item_id: int


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, publisher) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the database and notification channel swapped for test doubles."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def catalog(session_factory) -> Catalog:
    """
    One screen, rows A-C with 10 seats each. B1-B4 are VIP, C10 is blocked.
    Standard seats cost 10.00, VIP 15.00. Popcorn is tracked with 5 in stock
    and a low-stock threshold of 3; soda is not tracked.
    """
    now = datetime.now(timezone.utc)
    async with session_factory() as db:
        screen = Screen(organization_id=ORG_ID, name="Screen 1", rows=3, seats_per_row=10)
        db.add(screen)
        await db.flush()

        for row in "ABC":
            for number in range(1, 11):
                seat_type = "standard"
                if row == "B" and number <= 4:
                    seat_type = "vip"
                if row == "C" and number == 10:
                    seat_type = "blocked"
                db.add(SeatLayout(screen_id=screen.id, row_label=row, seat_number=number, seat_type=seat_type))

        showtime = Showtime(
            organization_id=ORG_ID,
            screen_id=screen.id,
            movie_title="The Long Queue",
            starts_at=now + timedelta(days=7),
            price=Decimal("10.00"),
            vip_price=Decimal("15.00"),
        )
        past = Showtime(
            organization_id=ORG_ID,
            screen_id=screen.id,
            movie_title="Yesterday's Matinee",
            starts_at=now - timedelta(hours=2),
            price=Decimal("10.00"),
        )
        cancelled = Showtime(
            organization_id=ORG_ID,
            screen_id=screen.id,
            movie_title="Pulled From Release",
            starts_at=now + timedelta(days=3),
            price=Decimal("10.00"),
            status="cancelled",
        )
        popcorn = ConcessionItem(
            organization_id=ORG_ID, name="Large Popcorn", category="snacks",
            price=Decimal("6.50"), low_stock_threshold=3,
        )
        soda = ConcessionItem(organization_id=ORG_ID, name="Soda", category="drinks", price=Decimal("3.00"))
        foreign = ConcessionItem(organization_id=OTHER_ORG_ID, name="Nachos", price=Decimal("5.00"))
        db.add_all([showtime, past, cancelled, popcorn, soda, foreign])
        await db.flush()

        await inventory_service.start_tracking(db, popcorn.id, 5)
        db.add(LoyaltySettings(organization_id=ORG_ID, is_enabled=True, points_per_currency_unit=Decimal("1")))
        await db.commit()

        return Catalog(
            screen_id=screen.id,
            showtime_id=showtime.id,
            past_showtime_id=past.id,
            cancelled_showtime_id=cancelled.id,
            popcorn_id=popcorn.id,
            soda_id=soda.id,
            other_org_item_id=foreign.id,
        )


@pytest.fixture
def make_promo(session_factory):
    async def _make(code: str = "SAVE10", **overrides) -> int:
        values = dict(
            organization_id=ORG_ID,
            code=code,
            discount_type="percentage",
            discount_value=Decimal("10"),
            max_uses=None,
            current_uses=0,
            min_order_value=Decimal("0"),
            valid_from=datetime.now(timezone.utc) - timedelta(days=1),
            valid_until=datetime.now(timezone.utc) + timedelta(days=30),
        )
        values.update(overrides)
        async with session_factory() as db:
            promo = PromoCode(**values)
            db.add(promo)
            await db.commit()
            return promo.id

    return _make


@pytest.fixture
def make_reward(session_factory):
    async def _make(points_required: int = 50, reward_type: str = "discount_fixed", **overrides) -> int:
        values = dict(
            organization_id=ORG_ID,
            name=f"{reward_type} for {points_required}",
            points_required=points_required,
            reward_type=reward_type,
            discount_value=Decimal("5.00"),
        )
        values.update(overrides)
        async with session_factory() as db:
            reward = LoyaltyReward(**values)
            db.add(reward)
            await db.commit()
            return reward.id

    return _make


@pytest.fixture
def give_points(session_factory):
    async def _give(points: int, customer_id: int = CUSTOMER_ID) -> None:
        async with session_factory() as db:
            await loyalty_service.adjust_points(db, ORG_ID, customer_id, points, description="test setup")
            await db.commit()

    return _give


def _headers(user_id: int, role: str, organization_id: int = ORG_ID) -> dict:
    token = create_access_token(user_id, organization_id, role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers() -> dict:
    return _headers(CUSTOMER_ID, "customer")


@pytest.fixture
def other_customer_headers() -> dict:
    return _headers(OTHER_CUSTOMER_ID, "customer")


@pytest.fixture
def staff_headers() -> dict:
    return _headers(STAFF_ID, "staff")
