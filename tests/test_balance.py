"""Tests for the balance manager."""

import logging
import random
from decimal import Decimal

import pytest

from propdesk.errors import ChallengeNotFoundError, InvalidOrderError, NegativeBalanceError
from propdesk.services.balance import credit_proceeds, deduct_cost


@pytest.mark.asyncio
async def test_deduct_then_credit_restores_balance(test_session, challenge):
    after_deduct = await deduct_cost(test_session, challenge.id, Decimal("250.005"), "trade_buy")
    assert after_deduct == Decimal("9749.99")  # Amount rounds half-up to 250.01

    after_credit = await credit_proceeds(test_session, challenge.id, Decimal("250.01"), "trade_sell")
    assert after_credit == Decimal("10000.00")

    await test_session.commit()
    await test_session.refresh(challenge)
    assert challenge.current_balance == Decimal("10000.00")


@pytest.mark.asyncio
async def test_deduction_below_zero_rejected(test_session, challenge):
    with pytest.raises(NegativeBalanceError) as exc_info:
        await deduct_cost(test_session, challenge.id, Decimal("10000.02"), "trade_buy")

    assert exc_info.value.code == "NEGATIVE_BALANCE"
    await test_session.rollback()
    await test_session.refresh(challenge)
    assert challenge.current_balance == Decimal("10000.00")


@pytest.mark.asyncio
async def test_deduction_within_rounding_tolerance_allowed(test_session, challenge):
    balance = await deduct_cost(test_session, challenge.id, Decimal("10000.01"), "trade_buy")
    assert balance == Decimal("-0.01")


@pytest.mark.asyncio
async def test_non_positive_amount_rejected(test_session, challenge):
    with pytest.raises(InvalidOrderError):
        await deduct_cost(test_session, challenge.id, Decimal("0"), "trade_buy")
    with pytest.raises(InvalidOrderError):
        await credit_proceeds(test_session, challenge.id, Decimal("-5"), "trade_sell")
    # Rounds to zero cents
    with pytest.raises(InvalidOrderError):
        await deduct_cost(test_session, challenge.id, Decimal("0.004"), "trade_buy")


@pytest.mark.asyncio
async def test_missing_challenge(test_session):
    with pytest.raises(ChallengeNotFoundError):
        await deduct_cost(test_session, "nope", Decimal("1"), "trade_buy")
    with pytest.raises(ChallengeNotFoundError):
        await credit_proceeds(test_session, "nope", Decimal("1"), "trade_sell")


@pytest.mark.asyncio
async def test_every_mutation_is_logged(test_session, challenge, caplog):
    with caplog.at_level(logging.INFO, logger="propdesk.services.balance"):
        await deduct_cost(test_session, challenge.id, Decimal("100"), "trade_buy")

    records = [r for r in caplog.records if r.getMessage() == "Balance mutation"]
    assert len(records) == 1
    record = records[0]
    assert record.challenge_id == challenge.id
    assert record.operation == "DEDUCT"
    assert record.source == "trade_buy"
    assert record.amount == "100.00"
    assert record.before == "10000.00"
    assert record.after == "9900.00"


@pytest.mark.asyncio
async def test_oversized_credit_warns_but_applies(test_session, challenge, caplog):
    with caplog.at_level(logging.WARNING, logger="propdesk.services.balance"):
        balance = await credit_proceeds(
            test_session, challenge.id, Decimal("12000"), "market_settlement"
        )

    assert balance == Decimal("22000.00")
    assert any(r.getMessage() == "Credit larger than starting balance" for r in caplog.records)


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", [1, 7, 42, 2024])
async def test_random_mutations_never_go_negative(test_session, challenge, seed):
    """Any mix of deductions and credits keeps cash at or above the tolerance."""
    rng = random.Random(seed)
    challenge_id = challenge.id
    expected = Decimal("10000.00")

    for _ in range(60):
        amount = Decimal(rng.randint(1, 400_000)) / 100
        if rng.random() < 0.7:
            try:
                balance = await deduct_cost(test_session, challenge_id, amount, "trade_buy")
            except NegativeBalanceError:
                await test_session.rollback()
                assert expected - amount < Decimal("-0.01")
                continue
            expected -= amount
        else:
            balance = await credit_proceeds(test_session, challenge_id, amount, "trade_sell")
            expected += amount
        await test_session.commit()

        assert balance == expected
        assert balance >= Decimal("-0.01")

    await test_session.refresh(challenge)
    assert challenge.current_balance == expected
