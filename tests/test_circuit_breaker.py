"""Tests for the arbitrage sentinel (circuit breaker)."""

from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from propdesk.config import BreakerConfig
from propdesk.services.circuit_breaker import (
    FREEZE_KEY,
    UNAVAILABLE_REASON,
    ArbitrageSentinel,
    FreezeStatus,
)
from propdesk.state import MemoryStore

D = Decimal


class UnreachableStore(MemoryStore):
    """Store whose reads fail as if Redis were down."""

    async def get(self, key):
        raise RedisConnectionError("connection refused")


# ============================================================================
# Velocity trigger
# ============================================================================


@pytest.mark.asyncio
async def test_rapid_move_freezes_market(sentinel, clock):
    assert await sentinel.record_price_update("mkt-1", "venue-a", D("0.40")) is False

    clock.advance(0.5)
    assert await sentinel.record_price_update("mkt-1", "venue-a", D("0.46")) is True

    status = await sentinel.is_market_frozen("mkt-1")
    assert status.frozen is True
    assert "Rapid price movement" in status.reason
    assert status.frozen_at == clock()
    assert status.expires_at == clock() + 30


@pytest.mark.asyncio
async def test_freeze_lifts_after_cooldown(sentinel, clock):
    await sentinel.trigger("mkt-1", "test freeze")

    clock.advance(29)
    assert (await sentinel.is_market_frozen("mkt-1")).frozen is True

    clock.advance(1)
    assert (await sentinel.is_market_frozen("mkt-1")).frozen is False


@pytest.mark.asyncio
async def test_slow_move_does_not_trip(sentinel, clock):
    await sentinel.record_price_update("mkt-1", "venue-a", D("0.40"))
    clock.advance(1.5)

    assert await sentinel.record_price_update("mkt-1", "venue-a", D("0.60")) is False
    assert (await sentinel.is_market_frozen("mkt-1")).frozen is False


@pytest.mark.asyncio
async def test_small_fast_move_does_not_trip(sentinel, clock):
    await sentinel.record_price_update("mkt-1", "venue-a", D("0.40"))
    clock.advance(0.1)

    assert await sentinel.record_price_update("mkt-1", "venue-a", D("0.449")) is False


@pytest.mark.asyncio
async def test_thresholds_are_inclusive(sentinel, clock):
    await sentinel.record_price_update("mkt-1", "venue-a", D("0.40"))
    clock.advance(1.0)

    assert await sentinel.record_price_update("mkt-1", "venue-a", D("0.45")) is True


@pytest.mark.asyncio
async def test_history_is_per_venue(sentinel, clock):
    await sentinel.record_price_update("mkt-1", "venue-a", D("0.40"))
    clock.advance(0.2)

    assert await sentinel.record_price_update("mkt-1", "venue-b", D("0.50")) is False


@pytest.mark.asyncio
async def test_history_expires(sentinel, clock):
    await sentinel.record_price_update("mkt-1", "venue-a", D("0.40"))
    clock.advance(61)

    # No previous snapshot left to compare against
    assert await sentinel.record_price_update("mkt-1", "venue-a", D("0.90")) is False


# ============================================================================
# Cross-venue divergence
# ============================================================================


@pytest.mark.asyncio
async def test_cross_venue_divergence(sentinel):
    assert await sentinel.check_cross_venue_divergence("evt-1", D("0.40"), D("0.43")) is False
    assert (await sentinel.is_market_frozen("evt-1")).frozen is False

    assert await sentinel.check_cross_venue_divergence("evt-1", D("0.40"), D("0.46")) is True
    status = await sentinel.is_market_frozen("evt-1")
    assert status.frozen is True
    assert "Cross-venue divergence" in status.reason


# ============================================================================
# Manual control and store failures
# ============================================================================


@pytest.mark.asyncio
async def test_clear_lifts_freeze(sentinel):
    await sentinel.trigger("mkt-1", "news")
    await sentinel.clear("mkt-1")

    assert (await sentinel.is_market_frozen("mkt-1")).frozen is False


@pytest.mark.asyncio
async def test_unparseable_state_counts_as_frozen(sentinel, store):
    await store.set(FREEZE_KEY.format("mkt-1"), "garbage")

    status = await sentinel.is_market_frozen("mkt-1")
    assert status.frozen is True
    assert status.reason == "Circuit breaker active"


@pytest.mark.asyncio
async def test_unreachable_store_fails_closed():
    sentinel = ArbitrageSentinel(UnreachableStore())

    status = await sentinel.is_market_frozen("mkt-1")

    assert status.frozen is True
    assert status.reason == UNAVAILABLE_REASON


@pytest.mark.asyncio
async def test_unreachable_store_can_fail_open():
    sentinel = ArbitrageSentinel(UnreachableStore(), BreakerConfig(fail_closed=False))

    assert (await sentinel.is_market_frozen("mkt-1")).frozen is False


def test_expiry_is_reported_as_iso_timestamp():
    status = FreezeStatus(frozen=True, reason="x", frozen_at=0.0, expires_at=30.0)
    assert status.expires_at_iso() == "1970-01-01T00:00:30+00:00"
    assert FreezeStatus(frozen=False).expires_at_iso() is None
