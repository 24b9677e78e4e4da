"""Balance integrity audit.

Replays each active challenge's trade history and compares the result with
the stored balance:

    expected = starting_balance + sum(SELL amounts) - sum(BUY amounts)

Every balance mutation made by trading has a matching trade row, so any
difference means a mutation escaped the balance manager.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.models import Challenge, ChallengeStatus, Trade, TradeSide
from propdesk.money import ZERO, to_money

logger = logging.getLogger(__name__)

# Differences at or below this are rounding
TOLERANCE = Decimal("1.00")


def classify_discrepancy(discrepancy: Decimal) -> str | None:
    """Severity label for a balance discrepancy, or None if within tolerance."""
    size = abs(discrepancy)
    if size <= TOLERANCE:
        return None
    if size > Decimal("5000"):
        return "critical"
    if size > Decimal("100"):
        return "moderate"
    return "minor"


@dataclass
class BalanceDiscrepancy:
    challenge_id: str
    owner_id: str
    starting_balance: Decimal
    stored_balance: Decimal
    expected_balance: Decimal
    discrepancy: Decimal
    severity: str


@dataclass
class BalanceAuditReport:
    challenges_audited: int = 0
    discrepancies: list[BalanceDiscrepancy] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.discrepancies


async def audit_balances(session: AsyncSession) -> BalanceAuditReport:
    """Check stored balances of all active challenges against trade history.

    Args:
        session: Database session (read-only)

    Returns:
        BalanceAuditReport listing challenges off by more than a dollar
    """
    signed_amount = case(
        (Trade.side == TradeSide.SELL, Trade.amount),
        else_=-Trade.amount,
    )
    net_flows = (
        select(Trade.challenge_id, func.sum(signed_amount).label("net"))
        .group_by(Trade.challenge_id)
        .subquery()
    )
    rows = (
        await session.execute(
            select(Challenge, net_flows.c.net)
            .outerjoin(net_flows, net_flows.c.challenge_id == Challenge.id)
            .where(Challenge.status == ChallengeStatus.ACTIVE)
            .order_by(Challenge.id)
        )
    ).all()

    report = BalanceAuditReport()
    for challenge, net in rows:
        report.challenges_audited += 1
        expected = to_money(challenge.starting_balance + Decimal(net or ZERO))
        discrepancy = challenge.current_balance - expected
        severity = classify_discrepancy(discrepancy)
        if severity is None:
            continue

        report.discrepancies.append(
            BalanceDiscrepancy(
                challenge_id=challenge.id,
                owner_id=challenge.owner_id,
                starting_balance=challenge.starting_balance,
                stored_balance=challenge.current_balance,
                expected_balance=expected,
                discrepancy=discrepancy,
                severity=severity,
            )
        )
        log = logger.error if severity == "critical" else logger.warning
        log(
            "Balance discrepancy",
            extra={
                "challenge_id": challenge.id,
                "stored": str(challenge.current_balance),
                "expected": str(expected),
                "discrepancy": str(discrepancy),
                "severity": severity,
            },
        )

    logger.info(
        "Balance audit complete",
        extra={
            "audited": report.challenges_audited,
            "discrepancies": len(report.discrepancies),
        },
    )
    return report
