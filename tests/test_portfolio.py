"""Tests for the portfolio service (equity and exposure)."""

from decimal import Decimal

import pytest

from propdesk.errors import ChallengeNotFoundError
from propdesk.models import Direction
from propdesk.services.portfolio import (
    direction_adjusted_price,
    get_equity,
    get_owned_challenge,
    get_risk_snapshot,
)
from propdesk.services.risk import RiskVerdict

D = Decimal


def test_direction_adjusted_price():
    assert direction_adjusted_price(D("0.30"), Direction.YES) == D("0.30")
    assert direction_adjusted_price(D("0.30"), Direction.NO) == D("0.70")


@pytest.mark.asyncio
async def test_flat_account_equity_is_cash(test_session, oracle, challenge):
    valuation = await get_equity(test_session, oracle, challenge)

    assert valuation.cash == D("10000")
    assert valuation.positions_value == D("0")
    assert valuation.equity == D("10000")
    assert valuation.positions == []


@pytest.mark.asyncio
async def test_equity_values_positions_at_live_prices(
    test_session, oracle, challenge, make_position
):
    await make_position(challenge.id, "mkt-a", Direction.YES, "0.40", "25")
    await make_position(challenge.id, "mkt-b", Direction.NO, "0.35", "20")
    await make_position(challenge.id, "mkt-c", Direction.YES, "0.50", "10")
    await oracle.publish_quote("mkt-a", "0.60", categories=["politics"])
    await oracle.publish_quote("mkt-b", "0.30", categories=["politics", "sports"])

    valuation = await get_equity(test_session, oracle, challenge)
    by_market = {p.market_id: p for p in valuation.positions}

    assert by_market["mkt-a"].market_value == D("15.00")
    assert by_market["mkt-a"].unrealized_pnl == D("5.00")
    assert by_market["mkt-b"].current_price == D("0.70")
    assert by_market["mkt-b"].market_value == D("14.00")
    assert by_market["mkt-b"].unrealized_pnl == D("7.00")

    # No quote: carried at cost
    assert by_market["mkt-c"].priced is False
    assert by_market["mkt-c"].market_value == D("5.00")
    assert by_market["mkt-c"].unrealized_pnl == D("0.00")

    assert valuation.positions_value == D("34.00")
    assert valuation.equity == D("10034.00")


@pytest.mark.asyncio
async def test_exposure_uses_cost_basis(test_session, oracle, challenge, make_position):
    politics, both = ["politics"], ["politics", "sports"]
    await make_position(challenge.id, "mkt-a", Direction.YES, "0.40", "25", politics)
    await make_position(challenge.id, "mkt-a", Direction.NO, "0.60", "10", politics)
    await make_position(challenge.id, "mkt-b", Direction.NO, "0.35", "20", both)
    await oracle.publish_quote("mkt-a", "0.90", categories=politics)
    await oracle.publish_quote("mkt-b", "0.30", categories=both)

    valuation = await get_equity(test_session, oracle, challenge)

    assert valuation.market_exposure("mkt-a") == D("16.00")
    assert valuation.market_exposure("mkt-z") == D("0")
    assert valuation.category_exposure() == {"politics": D("23.00"), "sports": D("7.00")}


@pytest.mark.asyncio
async def test_risk_snapshot_reflects_open_positions(
    test_session, oracle, challenge, make_position
):
    await make_position(challenge.id, "mkt-a", Direction.YES, "0.50", "1000")
    await oracle.publish_quote("mkt-a", "0.10")

    valuation, snapshot = await get_risk_snapshot(test_session, oracle, challenge)

    assert valuation.equity == D("10100.00")
    assert snapshot.equity == D("10100.00")
    assert snapshot.total_pnl == D("100.00")
    assert snapshot.drawdown_usage == D("0.00")
    assert snapshot.verdict == RiskVerdict.OK


@pytest.mark.asyncio
async def test_owned_challenge_lookup(test_session, trader, other_trader, challenge):
    found = await get_owned_challenge(test_session, trader.id, challenge.id)
    assert found.id == challenge.id

    with pytest.raises(ChallengeNotFoundError):
        await get_owned_challenge(test_session, other_trader.id, challenge.id)
    with pytest.raises(ChallengeNotFoundError):
        await get_owned_challenge(test_session, trader.id, "missing")


@pytest.mark.asyncio
async def test_category_exposure_includes_stale_markets(
    test_session, oracle, clock, challenge, make_position
):
    await make_position(challenge.id, "mkt-a", Direction.YES, "0.40", "1250", ["politics"])
    await oracle.publish_quote("mkt-a", "0.40", categories=["politics"])
    clock.advance(400)

    valuation = await get_equity(test_session, oracle, challenge)

    [position] = valuation.positions
    assert not position.priced
    assert valuation.category_exposure() == {"politics": D("500.00")}
