"""Payout estimate for funded accounts.

The trader's share is taken from realized cash only: profit above the
starting balance, capped by the tier's payout cap (or by the starting
balance when the tier sets none), then split with the firm.
"""

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.errors import NotFundedError
from propdesk.models import ChallengePhase
from propdesk.money import ZERO, to_money
from propdesk.rules import RulesConfig
from propdesk.services.portfolio import get_owned_challenge


@dataclass(frozen=True)
class PayoutCalculation:
    gross_profit: Decimal
    payout_cap: Decimal
    capped_profit: Decimal
    profit_split_pct: Decimal
    net_payout: Decimal  # trader's share
    firm_share: Decimal


def calculate_payout(
    rules: RulesConfig, starting_balance: Decimal, current_balance: Decimal
) -> PayoutCalculation:
    """Split the profit above the starting balance between trader and firm."""
    gross = max(ZERO, current_balance - starting_balance)
    cap = rules.payout_cap if rules.payout_cap is not None else starting_balance
    capped = min(gross, cap)
    net = to_money(capped * rules.profit_split_pct)
    return PayoutCalculation(
        gross_profit=to_money(gross),
        payout_cap=to_money(cap),
        capped_profit=to_money(capped),
        profit_split_pct=rules.profit_split_pct,
        net_payout=net,
        firm_share=to_money(capped) - net,
    )


async def get_payout_estimate(
    session: AsyncSession, owner_id: str, challenge_id: str
) -> PayoutCalculation:
    """Payout the owner would receive if the funded account paid out now.

    Raises:
        ChallengeNotFoundError: If the challenge is missing or not owned
        NotFundedError: If the challenge is not in the funded phase
    """
    challenge = await get_owned_challenge(session, owner_id, challenge_id)
    if challenge.phase != ChallengePhase.FUNDED:
        raise NotFundedError(challenge.id, challenge.phase.value)
    return calculate_payout(
        challenge.rules, challenge.starting_balance, challenge.current_balance
    )
