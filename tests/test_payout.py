"""Tests for the funded-account payout estimate."""

from decimal import Decimal

import pytest

from propdesk.errors import ChallengeNotFoundError, NotFundedError
from propdesk.models import ChallengePhase
from propdesk.rules import RulesConfig
from propdesk.services.lifecycle import provision_challenge
from propdesk.services.payout import calculate_payout, get_payout_estimate

D = Decimal


@pytest.fixture
def rules():
    """10k funded: $10,000 payout cap, 80% to the trader."""
    return RulesConfig.from_tier("10k", "funded")


def payout(rules, current, starting="10000"):
    return calculate_payout(rules, D(starting), D(current))


def test_profit_is_split_with_the_firm(rules):
    result = payout(rules, "10500")

    assert result.gross_profit == D("500.00")
    assert result.capped_profit == D("500.00")
    assert result.net_payout == D("400.00")
    assert result.firm_share == D("100.00")


def test_no_payout_below_starting_balance(rules):
    result = payout(rules, "9200")

    assert result.gross_profit == D("0.00")
    assert result.net_payout == D("0.00")
    assert result.firm_share == D("0.00")


def test_profit_is_capped(rules):
    result = payout(rules, "25000")

    assert result.gross_profit == D("15000.00")
    assert result.payout_cap == D("10000.00")
    assert result.capped_profit == D("10000.00")
    assert result.net_payout == D("8000.00")
    assert result.firm_share == D("2000.00")


def test_missing_cap_falls_back_to_starting_balance(rules):
    uncapped = rules.model_copy(update={"payout_cap": None})

    result = payout(uncapped, "16000", starting="5000")

    assert result.payout_cap == D("5000.00")
    assert result.capped_profit == D("5000.00")
    assert result.net_payout == D("4000.00")


def test_shares_always_add_up(rules):
    result = payout(rules.model_copy(update={"profit_split_pct": D("0.7")}), "10333.33")

    assert result.net_payout == D("233.33")
    assert result.net_payout + result.firm_share == result.capped_profit


# ============================================================================
# Service
# ============================================================================


@pytest.mark.asyncio
async def test_estimate_for_funded_challenge(test_session, trader):
    funded = await provision_challenge(test_session, trader.id, "10k", ChallengePhase.FUNDED)
    funded.current_balance = D("10750.00")
    await test_session.commit()

    result = await get_payout_estimate(test_session, trader.id, funded.id)

    assert result.net_payout == D("600.00")
    assert result.firm_share == D("150.00")


@pytest.mark.asyncio
async def test_estimate_requires_funded_phase(test_session, trader, challenge):
    with pytest.raises(NotFundedError) as exc_info:
        await get_payout_estimate(test_session, trader.id, challenge.id)

    assert exc_info.value.context["phase"] == "challenge"


@pytest.mark.asyncio
async def test_estimate_hidden_from_other_traders(test_session, other_trader, challenge):
    with pytest.raises(ChallengeNotFoundError):
        await get_payout_estimate(test_session, other_trader.id, challenge.id)
