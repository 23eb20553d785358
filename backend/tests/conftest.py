"""
Pytest fixtures for test database, client, gateway and seeded data.

Every test gets its own SQLite file. Fixtures write through short-lived
sessions and commit, so no test starts with a transaction (and its write
lock) still open.
"""

import os
import tempfile
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator, NamedTuple

# Settings are read at import time; point them at throwaway infrastructure first
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'gatehouse-import.db')}"
os.environ["REDIS_ENABLED"] = "false"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["PAYMENT_GATEWAY"] = "mock"

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatehouse.main import app
from gatehouse.db.base import Base
from gatehouse.db.session import build_engine, build_sessionmaker, get_db
from gatehouse.core.security import create_access_token, hash_password
from gatehouse.models.event import Event, TicketTier
from gatehouse.models.promo import PromoCode, PromoterCode
from gatehouse.models.user import User, UserRole
from gatehouse.services.gateway_factory import get_payment_gateway
from gatehouse.services.interfaces.mock_gateway import MockGateway


class SeededEvent(NamedTuple):
    event: Event
    tiers: dict[str, TicketTier]

    @property
    def id(self) -> str:
        return self.event.id


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh schema in a per-test database file."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def gateway() -> MockGateway:
    return MockGateway(
        key_id="rzp_test_key",
        key_secret="test-key-secret",
        webhook_secret="test-webhook-secret",
    )


@pytest_asyncio.fixture
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a fresh session per request and the mock gateway."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _create_user(session_factory, email: str, username: str, role: UserRole, full_name: str = None) -> User:
    async with session_factory() as session:
        user = User(
            email=email,
            username=username,
            hashed_password=hash_password("testpassword123"),
            full_name=full_name,
            role=role.value,
        )
        session.add(user)
        await session.commit()
        return user


def _headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


@pytest_asyncio.fixture
async def test_user(session_factory) -> User:
    """Attendee who buys tickets."""
    return await _create_user(session_factory, "test@example.com", "testuser", UserRole.ATTENDEE, "Test Buyer")


@pytest_asyncio.fixture
async def other_user(session_factory) -> User:
    return await _create_user(session_factory, "other@example.com", "otheruser", UserRole.ATTENDEE)


@pytest_asyncio.fixture
async def organizer(session_factory) -> User:
    return await _create_user(session_factory, "organizer@example.com", "organizer", UserRole.ORGANIZER)


@pytest_asyncio.fixture
async def staff_user(session_factory) -> User:
    return await _create_user(session_factory, "staff@example.com", "doorstaff", UserRole.STAFF, "Door Staff")


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict:
    return _headers(test_user)


@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict:
    return _headers(other_user)


@pytest_asyncio.fixture
async def organizer_headers(organizer: User) -> dict:
    return _headers(organizer)


@pytest_asyncio.fixture
async def staff_headers(staff_user: User) -> dict:
    return _headers(staff_user)


@pytest_asyncio.fixture
async def seed_event(session_factory, organizer):
    """Factory: seed an event with tiers given as dicts of column values."""

    async def _seed(tiers: list[dict] = None, **overrides) -> SeededEvent:
        tiers = tiers or [{"name": "GA", "price": 50000, "capacity": 100}]
        async with session_factory() as session:
            event = Event(
                title=overrides.pop("title", "Test Concert"),
                date=overrides.pop("date", datetime.now(timezone.utc) + timedelta(days=30)),
                location="Test Venue",
                organizer_id=organizer.id,
                **overrides,
            )
            session.add(event)
            await session.flush()

            created = {}
            for position, columns in enumerate(tiers):
                columns = dict(columns)
                columns.setdefault("remaining", columns["capacity"])
                tier = TicketTier(event_id=event.id, sort_order=position, **columns)
                session.add(tier)
                created[tier.name] = tier
            await session.commit()
            return SeededEvent(event=event, tiers=created)

    return _seed


@pytest_asyncio.fixture
async def paid_event(seed_event) -> SeededEvent:
    """GA at 500.00 with 100 units, VIP at 1500.00 with 2 units."""
    return await seed_event(tiers=[
        {"name": "GA", "price": 50000, "capacity": 100},
        {"name": "VIP", "price": 150000, "capacity": 2, "entry_type": "vip"},
    ])


@pytest_asyncio.fixture
async def rsvp_event(seed_event) -> SeededEvent:
    return await seed_event(tiers=[{"name": "Guest list", "price": 0, "capacity": 50}], is_rsvp=True)


@pytest_asyncio.fixture
async def add_promo(session_factory):
    """Factory: store a promo code (default 10% off) for an event."""

    async def _add(event_id: str, code: str = "SAVE10", **fields) -> PromoCode:
        fields.setdefault("discount_type", "percent")
        fields.setdefault("discount_value", 1000)
        async with session_factory() as session:
            promo = PromoCode(event_id=event_id, code=code, **fields)
            session.add(promo)
            await session.commit()
            return promo

    return _add


@pytest_asyncio.fixture
async def add_promoter(session_factory):
    async def _add(event_id: str, code: str = "DJ-ALEX", **fields) -> PromoterCode:
        async with session_factory() as session:
            promoter = PromoterCode(event_id=event_id, code=code, **fields)
            session.add(promoter)
            await session.commit()
            return promoter

    return _add
