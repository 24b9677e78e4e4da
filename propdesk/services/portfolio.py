"""Portfolio service - equity, unrealized P/L and exposure for a challenge.

Open positions are valued at the live, direction-adjusted price. A
position whose market has no fresh quote is carried at cost, so a missing
feed never shows up as a gain or loss.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.errors import ChallengeNotFoundError
from propdesk.models import Challenge, Direction, Position, PositionStatus
from propdesk.money import ONE, ZERO, to_money
from propdesk.oracle import PriceOracle, PriceQuote
from propdesk.services.risk import RiskSnapshot, evaluate_risk


def direction_adjusted_price(yes_price: Decimal, direction: Direction) -> Decimal:
    """Price of the side actually held. NO trades at 1 - YES."""
    return ONE - yes_price if direction == Direction.NO else yes_price


@dataclass
class PositionValuation:
    """An open position with its current value."""

    position_id: str
    market_id: str
    direction: Direction
    shares: Decimal
    entry_price: Decimal
    size_amount: Decimal
    current_price: Decimal | None  # None if the market has no fresh quote
    market_value: Decimal
    unrealized_pnl: Decimal
    categories: list[str] = field(default_factory=list)

    @property
    def priced(self) -> bool:
        return self.current_price is not None


@dataclass
class AccountValuation:
    """Cash plus open positions for one challenge."""

    challenge_id: str
    cash: Decimal
    positions_value: Decimal
    equity: Decimal
    positions: list[PositionValuation] = field(default_factory=list)

    def market_exposure(self, market_id: str) -> Decimal:
        """Cost basis held in one market, both directions."""
        return sum(
            (p.size_amount for p in self.positions if p.market_id == market_id), ZERO
        )

    def category_exposure(self) -> dict[str, Decimal]:
        """Cost basis held per category.

        Uses the categories stored on each position, so a market whose feed
        has gone stale still counts against its categories.
        """
        exposure: dict[str, Decimal] = {}
        for p in self.positions:
            for category in p.categories:
                exposure[category] = exposure.get(category, ZERO) + p.size_amount
        return exposure


def value_positions(
    positions: Iterable[Position], quotes: Mapping[str, PriceQuote]
) -> list[PositionValuation]:
    valuations = []
    for position in positions:
        quote = quotes.get(position.market_id)
        if quote is not None:
            price = direction_adjusted_price(quote.price, position.direction)
            market_value = to_money(position.shares * price)
        else:
            price = None
            market_value = position.size_amount
        valuations.append(
            PositionValuation(
                position_id=position.id,
                market_id=position.market_id,
                direction=position.direction,
                shares=position.shares,
                entry_price=position.entry_price,
                size_amount=position.size_amount,
                current_price=price,
                market_value=market_value,
                unrealized_pnl=market_value - position.size_amount,
                categories=list(position.categories or []),
            )
        )
    return valuations


async def load_open_positions(session: AsyncSession, challenge_id: str) -> list[Position]:
    result = await session.execute(
        select(Position)
        .where(
            Position.challenge_id == challenge_id,
            Position.status == PositionStatus.OPEN,
        )
        .order_by(Position.opened_at, Position.id)
    )
    return list(result.scalars().all())


async def get_equity(
    session: AsyncSession, oracle: PriceOracle, challenge: Challenge
) -> AccountValuation:
    """Value a challenge at live prices.

    Args:
        session: Database session
        oracle: Price source for open positions
        challenge: The challenge to value (its current_balance is used as cash)

    Returns:
        AccountValuation with per-position detail
    """
    positions = await load_open_positions(session, challenge.id)
    quotes = await oracle.get_latest_prices(p.market_id for p in positions) if positions else {}
    valuations = value_positions(positions, quotes)
    positions_value = sum((v.market_value for v in valuations), ZERO)
    return AccountValuation(
        challenge_id=challenge.id,
        cash=challenge.current_balance,
        positions_value=positions_value,
        equity=challenge.current_balance + positions_value,
        positions=valuations,
    )


def snapshot_for(challenge: Challenge, equity: Decimal) -> RiskSnapshot:
    """Evaluate a challenge's rules at a given equity."""
    return evaluate_risk(
        challenge.rules,
        equity=equity,
        starting_balance=challenge.starting_balance,
        high_water_mark=challenge.high_water_mark,
        start_of_day_equity=challenge.start_of_day_equity,
        phase=challenge.phase.value,
    )


async def get_risk_snapshot(
    session: AsyncSession, oracle: PriceOracle, challenge: Challenge
) -> tuple[AccountValuation, RiskSnapshot]:
    """Read-only risk view of a challenge at live prices."""
    valuation = await get_equity(session, oracle, challenge)
    return valuation, snapshot_for(challenge, valuation.equity)


async def get_owned_challenge(
    session: AsyncSession, owner_id: str, challenge_id: str
) -> Challenge:
    """Load a challenge the caller owns, whatever its status.

    Raises:
        ChallengeNotFoundError: If it does not exist or belongs to someone else
    """
    challenge = await session.get(Challenge, challenge_id)
    if challenge is None or challenge.owner_id != owner_id:
        raise ChallengeNotFoundError(challenge_id)
    return challenge


async def list_positions(
    session: AsyncSession, challenge_id: str, status: PositionStatus | None = None
) -> list[Position]:
    query = (
        select(Position)
        .where(Position.challenge_id == challenge_id)
        .order_by(Position.opened_at, Position.id)
    )
    if status is not None:
        query = query.where(Position.status == status)
    result = await session.execute(query)
    return list(result.scalars().all())
