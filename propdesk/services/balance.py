"""Balance manager.

The only code allowed to change a challenge's cash balance. Both
operations run inside the caller's transaction, lock the challenge row,
and write a forensic log entry for every mutation so that the provenance
of each dollar can be reconstructed from the logs alone.

A deduction that would take the balance below zero is rejected outright;
it is never clamped.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk import telemetry
from propdesk.config import settings
from propdesk.errors import ChallengeNotFoundError, InvalidOrderError, NegativeBalanceError
from propdesk.models import Challenge
from propdesk.money import to_money

logger = logging.getLogger(__name__)

# Rounding tolerance below zero
NEGATIVE_TOLERANCE = Decimal("-0.01")


async def lock_challenge(session: AsyncSession, challenge_id: str) -> Challenge | None:
    """Load a challenge with a row lock, refreshing any stale identity-map copy."""
    result = await session.execute(
        select(Challenge)
        .where(Challenge.id == challenge_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _check_amount(amount: Decimal) -> Decimal:
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidOrderError("Amount must be positive", amount=str(amount))
    return amount


async def deduct_cost(
    session: AsyncSession,
    challenge_id: str,
    amount: Decimal,
    source: str,
) -> Decimal:
    """Take cash out of a challenge's balance.

    Args:
        session: Database session (caller manages transaction)
        challenge_id: Challenge to debit
        amount: Dollars to deduct, must be positive
        source: What caused the mutation (e.g. "trade_buy")

    Returns:
        The new balance

    Raises:
        InvalidOrderError: If amount is not positive
        ChallengeNotFoundError: If the challenge does not exist
        NegativeBalanceError: If the balance would go below zero
    """
    amount = _check_amount(amount)
    challenge = await lock_challenge(session, challenge_id)
    if challenge is None:
        raise ChallengeNotFoundError(challenge_id)

    before = challenge.current_balance
    after = to_money(before - amount)

    if after < NEGATIVE_TOLERANCE:
        logger.error(
            "Balance would go negative",
            extra={
                "challenge_id": challenge_id,
                "operation": "DEDUCT",
                "source": source,
                "amount": str(amount),
                "before": str(before),
                "after": str(after),
            },
        )
        telemetry.record_balance_anomaly("negative_balance")
        raise NegativeBalanceError(challenge_id, after)

    if amount > settings.large_transaction_threshold:
        logger.warning(
            "Large transaction",
            extra={"challenge_id": challenge_id, "operation": "DEDUCT", "amount": str(amount)},
        )
        telemetry.record_balance_anomaly("large_transaction")

    challenge.current_balance = after
    await session.flush()

    logger.info(
        "Balance mutation",
        extra={
            "challenge_id": challenge_id,
            "operation": "DEDUCT",
            "source": source,
            "amount": str(amount),
            "before": str(before),
            "after": str(after),
        },
    )
    telemetry.record_balance_mutation("DEDUCT", source)
    return after


async def credit_proceeds(
    session: AsyncSession,
    challenge_id: str,
    amount: Decimal,
    source: str,
) -> Decimal:
    """Add cash to a challenge's balance.

    Args:
        session: Database session (caller manages transaction)
        challenge_id: Challenge to credit
        amount: Dollars to credit, must be positive
        source: What caused the mutation (e.g. "market_settlement")

    Returns:
        The new balance

    Raises:
        InvalidOrderError: If amount is not positive
        ChallengeNotFoundError: If the challenge does not exist
    """
    amount = _check_amount(amount)
    challenge = await lock_challenge(session, challenge_id)
    if challenge is None:
        raise ChallengeNotFoundError(challenge_id)

    before = challenge.current_balance
    after = to_money(before + amount)

    if amount > challenge.starting_balance:
        # Usually a settlement math error; legitimate big wins still go through
        logger.warning(
            "Credit larger than starting balance",
            extra={
                "challenge_id": challenge_id,
                "source": source,
                "amount": str(amount),
                "starting_balance": str(challenge.starting_balance),
            },
        )
        telemetry.record_balance_anomaly("large_credit")
    elif amount > settings.large_transaction_threshold:
        logger.warning(
            "Large transaction",
            extra={"challenge_id": challenge_id, "operation": "CREDIT", "amount": str(amount)},
        )
        telemetry.record_balance_anomaly("large_transaction")

    challenge.current_balance = after
    await session.flush()

    logger.info(
        "Balance mutation",
        extra={
            "challenge_id": challenge_id,
            "operation": "CREDIT",
            "source": source,
            "amount": str(amount),
            "before": str(before),
            "after": str(after),
        },
    )
    telemetry.record_balance_mutation("CREDIT", source)
    return after
