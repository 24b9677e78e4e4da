"""Settlement service.

Price feeds stop updating once a market resolves, which would leave
positions open forever. The settlement sweep finds open positions on
resolved markets, closes them at the resolution price and credits the
proceeds.

Each position settles in its own transaction under a row lock, and the
close is conditional on the position still being OPEN. Two sweeps running
at once, or a sweep racing a manual close, therefore credit a position
exactly once. One failing position is recorded and the sweep moves on.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk import telemetry
from propdesk.errors import ChallengeNotFoundError
from propdesk.models import Direction, Position, PositionStatus, Trade, TradeSide
from propdesk.money import ONE, ZERO, to_money, utcnow
from propdesk.oracle import MarketResolution, PriceOracle
from propdesk.services.balance import credit_proceeds, lock_challenge
from propdesk.services.executor import generate_id, lock_position
from propdesk.services.lifecycle import enforce_rules

logger = logging.getLogger(__name__)

CLOSURE_REASON = "market_settlement"


@dataclass
class SettlementResult:
    positions_checked: int = 0
    positions_settled: int = 0
    total_pnl_settled: Decimal = ZERO
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _OpenPosition:
    """Snapshot of an open position taken before the oracle call."""

    id: str
    challenge_id: str
    market_id: str
    direction: Direction


def settlement_price(resolution: MarketResolution, direction: Direction) -> Decimal | None:
    """Final price of the side held, or None if the outcome is unknown.

    An explicit resolution price (0 or 1, YES terms) wins over the winning
    outcome label.
    """
    if resolution.resolution_price is not None:
        yes_price = resolution.resolution_price
    elif resolution.winning_outcome:
        yes_price = ONE if resolution.winning_outcome.strip().lower() == "yes" else ZERO
    else:
        return None
    return ONE - yes_price if direction == Direction.NO else yes_price


async def _settle_position(
    session: AsyncSession,
    oracle: PriceOracle,
    snapshot: _OpenPosition,
    price: Decimal,
    now: datetime,
) -> Decimal | None:
    """Settle one position in its own transaction.

    Returns:
        The realized P&L, or None if the position was no longer open
    """
    challenge = await lock_challenge(session, snapshot.challenge_id)
    if challenge is None:
        raise ChallengeNotFoundError(snapshot.challenge_id)

    position = await lock_position(session, snapshot.id)
    if position is None or position.status != PositionStatus.OPEN:
        await session.rollback()
        logger.info("Position already settled, skipping", extra={"position_id": snapshot.id})
        return None

    # Authoritative quantities come from the locked row
    shares = position.shares
    pnl = to_money(shares * (price - position.entry_price))
    proceeds = to_money(shares * price)

    closed = await session.execute(
        update(Position)
        .where(Position.id == position.id, Position.status == PositionStatus.OPEN)
        .values(
            status=PositionStatus.CLOSED,
            shares=ZERO,
            closed_at=now,
            closed_price=price,
            pnl=pnl,
        )
    )
    if closed.rowcount == 0:
        await session.rollback()
        logger.info("Position already settled, skipping", extra={"position_id": snapshot.id})
        return None

    if proceeds > 0:
        await credit_proceeds(session, challenge.id, proceeds, CLOSURE_REASON)

    session.add(
        Trade(
            id=generate_id(),
            challenge_id=challenge.id,
            position_id=position.id,
            market_id=position.market_id,
            side=TradeSide.SELL,
            direction=position.direction,
            amount=proceeds,
            price=price,
            shares=shares,
            realized_pnl=pnl,
            executed_at=now,
            closure_reason=CLOSURE_REASON,
        )
    )
    await session.flush()
    await enforce_rules(session, oracle, challenge)
    await session.commit()

    logger.info(
        "Position settled",
        extra={
            "position_id": position.id,
            "challenge_id": challenge.id,
            "market_id": position.market_id,
            "direction": position.direction.value,
            "entry_price": str(position.entry_price),
            "settlement_price": str(price),
            "shares": str(shares),
            "pnl": str(pnl),
            "proceeds": str(proceeds),
        },
    )
    telemetry.record_position_settled(position.market_id)
    return pnl


async def settle_resolved_positions(
    session: AsyncSession, oracle: PriceOracle, now: datetime | None = None
) -> SettlementResult:
    """Settle every open position whose market has resolved.

    Safe to run repeatedly and concurrently: a position settled by another
    run is skipped.

    Args:
        session: Database session; committed once per settled position
        oracle: Source of resolution status (one batch call per sweep)
        now: Settlement time

    Returns:
        SettlementResult with counts, total settled P&L and per-position errors
    """
    now = now or utcnow()
    result = SettlementResult()

    rows = (
        await session.execute(
            select(
                Position.id, Position.challenge_id, Position.market_id, Position.direction
            ).where(Position.status == PositionStatus.OPEN)
        )
    ).all()
    # Release the read before waiting on the oracle
    await session.rollback()

    if not rows:
        logger.info("No open positions to check")
        return result

    open_positions = [_OpenPosition(*row) for row in rows]
    market_ids = list(dict.fromkeys(p.market_id for p in open_positions))
    result.positions_checked = len(open_positions)
    logger.info(
        "Settlement scan started",
        extra={"open_positions": len(open_positions), "unique_markets": len(market_ids)},
    )

    resolutions = await oracle.batch_get_resolution_status(market_ids)

    for snapshot in open_positions:
        resolution = resolutions.get(snapshot.market_id)
        if resolution is None or not resolution.is_resolved:
            continue

        price = settlement_price(resolution, snapshot.direction)
        if price is None:
            logger.warning(
                "Resolved market with unknown outcome",
                extra={"market_id": snapshot.market_id, "position_id": snapshot.id},
            )
            continue

        try:
            pnl = await _settle_position(session, oracle, snapshot, price, now)
        except Exception as exc:
            await session.rollback()
            message = f"Failed to settle position {snapshot.id[:8]}: {exc}"
            logger.error(message, extra={"position_id": snapshot.id}, exc_info=True)
            telemetry.record_settlement_error()
            result.errors.append(message)
            continue

        if pnl is not None:
            result.positions_settled += 1
            result.total_pnl_settled += pnl

    logger.info(
        "Settlement scan complete",
        extra={
            "checked": result.positions_checked,
            "settled": result.positions_settled,
            "total_pnl": str(result.total_pnl_settled),
            "errors": len(result.errors),
        },
    )
    return result
