"""
Shared pytest fixtures for testing the trading engine.

Uses an in-memory SQLite database and an in-process shared store driven
by a manual clock, so tests are fast, isolated and deterministic.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from propdesk.config import BookConfig, BreakerConfig, Settings, get_settings
from propdesk.database import Base, get_session
from propdesk.deps import get_idempotency_guard, get_oracle, get_sentinel, get_store
from propdesk.main import app
from propdesk.models import Direction, Position, PositionStatus, Trader
from propdesk.money import utcnow
from propdesk.oracle import CachedPriceOracle
from propdesk.services.admin import hash_api_key
from propdesk.services.circuit_breaker import ArbitrageSentinel
from propdesk.services.idempotency import IdempotencyGuard
from propdesk.services.lifecycle import provision_challenge
from propdesk.state import MemoryStore


# Use in-memory SQLite for tests (fast, isolated)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TRADER_API_KEY = "sk_test_trader_key"
OTHER_API_KEY = "sk_test_other_key"
CRON_SECRET = "test-cron-secret"

# Zero-spread book: fills land exactly on the quote while depth lasts
FLAT_BOOK = BookConfig(spread=Decimal("0"))


class ManualClock:
    """Clock that only moves when told to (epoch seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio backend for pytest-asyncio."""
    return "asyncio"


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine.

    Creates tables at the start, drops them at the end.
    Each test gets a fresh database.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def test_session(session_factory):
    """Provide a database session for a test.

    Rolls back the session after each test for isolation.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# --- Shared state and market data ---

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def oracle(store, clock):
    return CachedPriceOracle(store, max_age_seconds=300, clock=clock)


@pytest.fixture
def sentinel(store, clock):
    return ArbitrageSentinel(store, BreakerConfig(), clock=clock)


@pytest.fixture
def guard(store):
    return IdempotencyGuard(store, ttl_seconds=60)


@pytest.fixture
def flat_book():
    return FLAT_BOOK


@pytest_asyncio.fixture
async def test_client(session_factory, store, oracle, sentinel, guard):
    """Provide a FastAPI test client with test database and in-memory state.

    ASGITransport does not run the lifespan, so every service the lifespan
    would build is supplied through dependency overrides.
    """

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_oracle] = lambda: oracle
    app.dependency_overrides[get_sentinel] = lambda: sentinel
    app.dependency_overrides[get_idempotency_guard] = lambda: guard
    app.dependency_overrides[get_settings] = lambda: Settings(
        cron_secret=CRON_SECRET, book=FLAT_BOOK
    )

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


# --- Helper fixtures for creating test data ---

@pytest_asyncio.fixture
async def trader(test_session):
    """Create a trader whose API key is TRADER_API_KEY."""
    t = Trader(id="trader1", api_key_hash=hash_api_key(TRADER_API_KEY))
    test_session.add(t)
    await test_session.commit()
    await test_session.refresh(t)
    return t


@pytest_asyncio.fixture
async def other_trader(test_session):
    t = Trader(id="trader2", api_key_hash=hash_api_key(OTHER_API_KEY))
    test_session.add(t)
    await test_session.commit()
    await test_session.refresh(t)
    return t


@pytest_asyncio.fixture
async def challenge(test_session, trader):
    """A fresh 10k evaluation challenge.

    Rules: $1,000 total drawdown, $500 daily drawdown, $1,000 profit
    target, $500 per market, $1,000 per category.
    """
    return await provision_challenge(test_session, trader.id, "10k")


@pytest.fixture
def make_position(test_session):
    """Insert an open position directly, without touching the balance."""

    async def _make(
        challenge_id: str,
        market_id: str,
        direction: Direction,
        entry_price: str,
        shares: str,
        categories: list[str] | None = None,
    ) -> Position:
        entry = Decimal(entry_price)
        qty = Decimal(shares)
        position = Position(
            id=f"pos-{market_id}-{direction.value}-{challenge_id[:8]}",
            challenge_id=challenge_id,
            market_id=market_id,
            direction=direction,
            entry_price=entry,
            shares=qty,
            size_amount=(entry * qty).quantize(Decimal("0.01")),
            categories=categories or [],
            status=PositionStatus.OPEN,
            opened_at=utcnow() - timedelta(hours=1),
        )
        test_session.add(position)
        await test_session.commit()
        return position

    return _make


@pytest.fixture
def auth_headers(trader):
    return {"X-API-Key": TRADER_API_KEY}


@pytest.fixture
def other_auth_headers(other_trader):
    return {"X-API-Key": OTHER_API_KEY}


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}
