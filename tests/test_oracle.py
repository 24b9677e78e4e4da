"""Tests for the cached price oracle."""

from decimal import Decimal

import pytest

from propdesk.oracle import PRICE_KEY, RESOLUTION_KEY


# ============================================================================
# Prices
# ============================================================================


@pytest.mark.asyncio
async def test_published_quote_is_read_back(oracle):
    await oracle.publish_quote("mkt-1", "0.42", categories=["politics"], volume="250000")

    quote = await oracle.get_latest_price("mkt-1")

    assert quote.price == Decimal("0.42")
    assert quote.categories == ["politics"]
    assert quote.volume == Decimal("250000")


@pytest.mark.asyncio
async def test_missing_market_has_no_price(oracle):
    assert await oracle.get_latest_price("unknown") is None


@pytest.mark.asyncio
async def test_stale_quote_is_ignored(oracle, clock):
    await oracle.publish_quote("mkt-1", "0.42")

    clock.advance(300)
    assert await oracle.get_latest_price("mkt-1") is not None

    clock.advance(1)
    assert await oracle.get_latest_price("mkt-1") is None


@pytest.mark.asyncio
async def test_malformed_quote_is_ignored(oracle, store):
    await store.set(PRICE_KEY.format("mkt-1"), "not json")
    await store.set(PRICE_KEY.format("mkt-2"), '{"price": "1.5", "timestamp": 0}')

    assert await oracle.get_latest_price("mkt-1") is None
    assert await oracle.get_latest_price("mkt-2") is None


@pytest.mark.asyncio
async def test_get_latest_prices_omits_unavailable(oracle, clock):
    await oracle.publish_quote("fresh", "0.30")
    await oracle.publish_quote("stale", "0.60", timestamp=clock() - 1000)

    quotes = await oracle.get_latest_prices(["fresh", "stale", "missing", "fresh"])

    assert set(quotes) == {"fresh"}
    assert quotes["fresh"].price == Decimal("0.30")


# ============================================================================
# Resolutions
# ============================================================================


@pytest.mark.asyncio
async def test_resolution_status_batch(oracle, store):
    await oracle.publish_resolution("won", winning_outcome="Yes", resolution_price="1")
    await store.set(RESOLUTION_KEY.format("broken"), "{")

    statuses = await oracle.batch_get_resolution_status(["won", "open", "broken"])

    assert statuses["won"].is_resolved is True
    assert statuses["won"].winning_outcome == "Yes"
    assert statuses["won"].resolution_price == Decimal("1")
    assert statuses["open"].is_resolved is False
    assert statuses["broken"].is_resolved is False
