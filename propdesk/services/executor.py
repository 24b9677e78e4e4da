"""Trade executor.

Runs one BUY, SELL or position close end to end:

1. Ownership and status of the challenge
2. Circuit breaker for the market
3. Live price from the oracle (no stale fallback)
4. Risk limits (BUY only)
5. Fill priced by walking the order book, with an optional slippage cap
6. Balance mutation, position and trade record in one transaction
7. Rule enforcement on the new state, in the same transaction

Any failure rolls the whole transaction back, so there is never a balance
change without its position and trade rows, or the other way around.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk import telemetry
from propdesk.config import BookConfig, settings
from propdesk.errors import (
    ChallengeInactiveError,
    ChallengeNotFoundError,
    InvalidOrderError,
    MarketDataUnavailableError,
    MarketFrozenError,
    MarketNearlyResolvedError,
    PositionClosedError,
    PositionNotFoundError,
    SlippageExceededError,
)
from propdesk.models import (
    Challenge,
    ChallengeStatus,
    Direction,
    Position,
    PositionStatus,
    Trade,
    TradeSide,
)
from propdesk.money import ZERO, to_money, to_price, to_shares, utcnow
from propdesk.oracle import OrderBook, PriceOracle, PriceQuote
from propdesk.services.balance import credit_proceeds, deduct_cost, lock_challenge
from propdesk.services.circuit_breaker import ArbitrageSentinel
from propdesk.services.lifecycle import enforce_rules
from propdesk.services.orderbook import Fill, book_for_quote, simulate_fill
from propdesk.services.portfolio import get_equity, snapshot_for
from propdesk.services.risk import RiskSnapshot, validate_trade

logger = logging.getLogger(__name__)

# YES prices at or beyond these bounds mean the market has all but resolved
RESOLVED_HIGH = Decimal("0.95")
RESOLVED_LOW = Decimal("0.05")

# Execution price bounds for buying a side
MIN_BUY_PRICE = Decimal("0.01")
MAX_BUY_PRICE = Decimal("0.99")


def generate_id() -> str:
    return str(uuid.uuid4())


@dataclass
class TradeResult:
    """Outcome of execute_trade."""

    trade: Trade
    position: Position
    new_balance: Decimal
    risk: RiskSnapshot
    challenge_status: ChallengeStatus
    realized_pnl: Decimal | None = None
    fill: Fill | None = None


@dataclass
class CloseResult:
    """Outcome of closing (or reducing) a position."""

    proceeds: Decimal
    invested: Decimal
    pnl: Decimal
    trade: Trade
    position: Position
    new_balance: Decimal
    risk: RiskSnapshot | None = None
    challenge_status: ChallengeStatus | None = None
    fill: Fill | None = None


# ============================================================================
# Pre-trade checks
# ============================================================================


async def _get_owned_challenge(
    session: AsyncSession, owner_id: str, challenge_id: str, lock: bool = False
) -> Challenge:
    if lock:
        challenge = await lock_challenge(session, challenge_id)
    else:
        challenge = await session.get(Challenge, challenge_id)
    if challenge is None or challenge.owner_id != owner_id:
        raise ChallengeNotFoundError(challenge_id)
    if not challenge.is_active:
        raise ChallengeInactiveError(challenge_id, challenge.status.value)
    return challenge


async def _check_breaker(sentinel: ArbitrageSentinel, market_id: str) -> None:
    status = await sentinel.is_market_frozen(market_id)
    if status.frozen:
        logger.info(
            "Trade blocked by circuit breaker",
            extra={"market_id": market_id, "reason": status.reason},
        )
        raise MarketFrozenError(market_id, status.reason, status.expires_at_iso())


async def _get_tradable_quote(oracle: PriceOracle, market_id: str) -> PriceQuote:
    quote = await oracle.get_latest_price(market_id)
    if quote is None:
        raise MarketDataUnavailableError(market_id)
    if quote.price >= RESOLVED_HIGH or quote.price <= RESOLVED_LOW:
        raise MarketNearlyResolvedError(market_id, quote.price)
    return quote


def _fill(
    book: OrderBook,
    source: str,
    side: TradeSide,
    direction: Direction,
    max_slippage: Decimal | None,
    amount: Decimal | None = None,
    shares: Decimal | None = None,
) -> Fill:
    fill = simulate_fill(book, side, direction, amount=amount, shares=shares, source=source)
    if max_slippage is not None and fill.slippage > max_slippage:
        raise SlippageExceededError(fill.slippage, max_slippage)
    return fill


async def lock_position(session: AsyncSession, position_id: str) -> Position | None:
    """Load a position with a row lock, refreshing any stale identity-map copy."""
    result = await session.execute(
        select(Position)
        .where(Position.id == position_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _find_open_position(
    session: AsyncSession, challenge_id: str, market_id: str, direction: Direction
) -> Position | None:
    result = await session.execute(
        select(Position)
        .where(
            Position.challenge_id == challenge_id,
            Position.market_id == market_id,
            Position.direction == direction,
            Position.status == PositionStatus.OPEN,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


# ============================================================================
# Position mutations (caller holds the challenge and position locks)
# ============================================================================


async def reduce_position(
    session: AsyncSession,
    challenge: Challenge,
    position: Position,
    shares: Decimal,
    price: Decimal,
    closure_reason: str | None,
    source: str,
    now: datetime,
) -> CloseResult:
    """Sell shares out of a locked position and credit the proceeds.

    Selling every share closes the position. The close is a conditional
    update on status = OPEN, so a position already closed by someone else
    is rejected rather than credited twice.

    Args:
        session: Database session (caller manages transaction)
        challenge: The owning challenge, locked
        position: The position, locked and OPEN
        shares: Shares to sell, taken from the locked row on a full close
        price: Direction-adjusted exit price
        closure_reason: Stored on the trade (e.g. "manual_close")
        source: Balance mutation source for the forensic log
        now: Execution time

    Returns:
        CloseResult without a risk snapshot (the caller enforces rules)

    Raises:
        InvalidOrderError: If shares is not positive or exceeds the holding
        PositionClosedError: If the position is no longer open
    """
    if shares <= 0:
        raise InvalidOrderError("Shares must be positive", shares=str(shares))
    if shares > position.shares:
        raise InvalidOrderError(
            f"Cannot sell {shares} shares, position holds {position.shares}",
            position_id=position.id,
        )

    full_close = shares == position.shares
    if full_close:
        invested = position.size_amount
    else:
        invested = to_money(position.size_amount * shares / position.shares)
    proceeds = to_money(shares * price)
    pnl = proceeds - invested

    if full_close:
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
            raise PositionClosedError("Position is already closed", position_id=position.id)
    else:
        position.shares = to_shares(position.shares - shares)
        position.size_amount = position.size_amount - invested

    if proceeds > 0:
        new_balance = await credit_proceeds(session, challenge.id, proceeds, source)
    else:
        new_balance = challenge.current_balance

    trade = Trade(
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
        closure_reason=closure_reason,
    )
    session.add(trade)
    await session.flush()

    return CloseResult(
        proceeds=proceeds,
        invested=invested,
        pnl=pnl,
        trade=trade,
        position=position,
        new_balance=new_balance,
    )


async def _buy(
    session: AsyncSession,
    oracle: PriceOracle,
    challenge: Challenge,
    quote: PriceQuote,
    market_id: str,
    direction: Direction,
    amount: Decimal,
    book: OrderBook,
    book_source: str,
    max_slippage: Decimal | None,
    now: datetime,
) -> TradeResult:
    valuation = await get_equity(session, oracle, challenge)
    snapshot = snapshot_for(challenge, valuation.equity)
    existing = await _find_open_position(session, challenge.id, market_id, direction)

    validate_trade(
        challenge.rules,
        snapshot,
        amount=amount,
        cash=challenge.current_balance,
        starting_balance=challenge.starting_balance,
        market_exposure=valuation.market_exposure(market_id),
        market_categories=quote.categories,
        category_exposure=valuation.category_exposure(),
        open_position_count=len(valuation.positions),
        opens_new_position=existing is None,
        market_volume=quote.volume,
    )

    fill = _fill(book, book_source, TradeSide.BUY, direction, max_slippage, amount=amount)
    price, shares = fill.price, fill.shares
    if not MIN_BUY_PRICE < price < MAX_BUY_PRICE:
        raise InvalidOrderError(
            f"Execution price {price} is outside tradable range",
            price=str(price),
        )
    if shares <= 0:
        raise InvalidOrderError("Amount too small to buy any shares", amount=str(amount))

    new_balance = await deduct_cost(session, challenge.id, amount, "trade_buy")

    if existing is not None:
        total_shares = existing.shares + shares
        existing.entry_price = to_price(
            (existing.shares * existing.entry_price + shares * price) / total_shares
        )
        existing.shares = total_shares
        existing.size_amount = existing.size_amount + amount
        existing.categories = sorted(set(existing.categories or []) | set(quote.categories))
        position = existing
    else:
        position = Position(
            id=generate_id(),
            challenge_id=challenge.id,
            market_id=market_id,
            direction=direction,
            entry_price=price,
            shares=shares,
            size_amount=amount,
            categories=sorted(set(quote.categories)),
            status=PositionStatus.OPEN,
            opened_at=now,
        )
        session.add(position)

    trade = Trade(
        id=generate_id(),
        challenge_id=challenge.id,
        position_id=position.id,
        market_id=market_id,
        side=TradeSide.BUY,
        direction=direction,
        amount=amount,
        price=price,
        shares=shares,
        executed_at=now,
    )
    session.add(trade)
    challenge.last_activity_at = now
    await session.flush()

    risk = await enforce_rules(session, oracle, challenge)
    return TradeResult(
        trade=trade,
        position=position,
        new_balance=new_balance,
        risk=risk,
        challenge_status=challenge.status,
        fill=fill,
    )


async def _sell(
    session: AsyncSession,
    oracle: PriceOracle,
    challenge: Challenge,
    market_id: str,
    direction: Direction,
    amount: Decimal | None,
    shares: Decimal | None,
    book: OrderBook,
    book_source: str,
    max_slippage: Decimal | None,
    now: datetime,
) -> TradeResult:
    position = await _find_open_position(session, challenge.id, market_id, direction)
    if position is None:
        raise PositionNotFoundError(
            f"No open {direction.value} position for {market_id}", market_id=market_id
        )

    if shares is None:
        # Asking for at least the whole position's value sells all of it
        whole = simulate_fill(
            book, TradeSide.SELL, direction, shares=position.shares, source=book_source
        )
        if amount >= to_money(whole.price * position.shares):
            shares = position.shares
        else:
            estimate = simulate_fill(
                book, TradeSide.SELL, direction, amount=amount, source=book_source
            )
            shares = min(estimate.shares, position.shares)
    else:
        shares = to_shares(shares)
    if shares <= 0:
        raise InvalidOrderError("Amount too small to sell any shares", amount=str(amount))
    if shares > position.shares:
        raise InvalidOrderError(
            f"Cannot sell {shares} shares, position holds {position.shares}",
            position_id=position.id,
        )

    fill = _fill(book, book_source, TradeSide.SELL, direction, max_slippage, shares=shares)
    closed = await reduce_position(
        session, challenge, position, shares, fill.price,
        closure_reason=None, source="trade_sell", now=now,
    )
    challenge.last_activity_at = now
    risk = await enforce_rules(session, oracle, challenge)
    return TradeResult(
        trade=closed.trade,
        position=position,
        new_balance=closed.new_balance,
        risk=risk,
        challenge_status=challenge.status,
        realized_pnl=closed.pnl,
        fill=fill,
    )


# ============================================================================
# Public entry points
# ============================================================================


async def execute_trade(
    session: AsyncSession,
    oracle: PriceOracle,
    sentinel: ArbitrageSentinel,
    owner_id: str,
    challenge_id: str,
    market_id: str,
    side: TradeSide,
    direction: Direction,
    amount: Decimal | None = None,
    shares: Decimal | None = None,
    now: datetime | None = None,
    max_slippage: Decimal | None = None,
    book_config: BookConfig | None = None,
) -> TradeResult:
    """Execute one BUY or SELL for a challenge.

    BUY spends a dollar amount. SELL takes either an explicit share count
    or a dollar amount to raise; explicit shares avoid recomputing the
    quantity from a price that may have moved. Both are filled against the
    market's order book.

    Args:
        session: Database session; committed on success, rolled back on error
        oracle: Live price source
        sentinel: Circuit breaker consulted before pricing
        owner_id: Trader placing the order
        challenge_id: Challenge to trade on
        market_id: Market to trade
        side: BUY or SELL
        direction: YES or NO
        amount: Dollars to spend (BUY) or raise (SELL)
        shares: Shares to sell (SELL only)
        now: Execution time
        max_slippage: Reject the order if the fill's average price is further
            than this fraction from the best level
        book_config: Synthetic book shape; defaults to settings.book

    Returns:
        TradeResult with the trade, the position, the new balance, the fill
        and the post-trade risk snapshot

    Raises:
        TradingError: Any subclass; nothing is written when one is raised
    """
    now = now or utcnow()

    if side == TradeSide.BUY:
        if shares is not None:
            raise InvalidOrderError("BUY orders take a dollar amount, not shares")
        if amount is None or to_money(amount) <= 0:
            raise InvalidOrderError("Amount must be positive")
        amount = to_money(amount)
    else:
        if (amount is None) == (shares is None):
            raise InvalidOrderError("SELL orders take either amount or shares")
        if (shares is not None and shares <= 0) or (amount is not None and amount <= 0):
            raise InvalidOrderError("Sell quantity must be positive")

    try:
        await _get_owned_challenge(session, owner_id, challenge_id)
        await _check_breaker(sentinel, market_id)
        quote = await _get_tradable_quote(oracle, market_id)
        book, book_source = book_for_quote(quote, book_config or settings.book)

        challenge = await _get_owned_challenge(session, owner_id, challenge_id, lock=True)
        if side == TradeSide.BUY:
            result = await _buy(
                session, oracle, challenge, quote, market_id, direction, amount,
                book, book_source, max_slippage, now,
            )
        else:
            result = await _sell(
                session, oracle, challenge, market_id, direction, amount, shares,
                book, book_source, max_slippage, now,
            )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    telemetry.record_trade(market_id, side.value, result.trade.amount)
    logger.info(
        "Trade executed",
        extra={
            "trade_id": result.trade.id,
            "challenge_id": challenge_id,
            "market_id": market_id,
            "side": side.value,
            "direction": direction.value,
            "amount": str(result.trade.amount),
            "shares": str(result.trade.shares),
            "price": str(result.trade.price),
            "slippage": str(result.fill.slippage) if result.fill else None,
            "new_balance": str(result.new_balance),
        },
    )
    return result


async def close_position(
    session: AsyncSession,
    oracle: PriceOracle,
    sentinel: ArbitrageSentinel,
    owner_id: str,
    challenge_id: str,
    position_id: str,
    now: datetime | None = None,
    max_slippage: Decimal | None = None,
    book_config: BookConfig | None = None,
) -> CloseResult:
    """Close an entire position against the live order book.

    The share count comes from the locked position row, never from an
    earlier read.

    Args:
        session: Database session; committed on success, rolled back on error
        oracle: Live price source
        sentinel: Circuit breaker consulted before pricing
        owner_id: Trader closing the position
        challenge_id: Challenge that owns the position
        position_id: Position to close
        now: Execution time
        max_slippage: Optional cap on the fill's slippage
        book_config: Synthetic book shape; defaults to settings.book

    Returns:
        CloseResult with proceeds, invested amount, P&L, the SELL trade and
        the new balance

    Raises:
        TradingError: Any subclass; nothing is written when one is raised
    """
    now = now or utcnow()

    try:
        await _get_owned_challenge(session, owner_id, challenge_id)
        position = await session.get(Position, position_id)
        if position is None or position.challenge_id != challenge_id:
            raise PositionNotFoundError("Position not found", position_id=position_id)
        market_id = position.market_id

        await _check_breaker(sentinel, market_id)
        quote = await _get_tradable_quote(oracle, market_id)

        challenge = await _get_owned_challenge(session, owner_id, challenge_id, lock=True)
        position = await lock_position(session, position_id)
        if position is None or position.challenge_id != challenge_id:
            raise PositionNotFoundError("Position not found", position_id=position_id)
        if position.status != PositionStatus.OPEN:
            raise PositionClosedError("Position is already closed", position_id=position_id)

        book, book_source = book_for_quote(quote, book_config or settings.book)
        fill = _fill(
            book, book_source, TradeSide.SELL, position.direction, max_slippage,
            shares=position.shares,
        )
        result = await reduce_position(
            session, challenge, position, position.shares, fill.price,
            closure_reason="manual_close", source="position_close", now=now,
        )
        result.fill = fill
        challenge.last_activity_at = now
        result.risk = await enforce_rules(session, oracle, challenge)
        result.challenge_status = challenge.status
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    telemetry.record_trade(market_id, TradeSide.SELL.value, result.proceeds)
    logger.info(
        "Position closed",
        extra={
            "position_id": position_id,
            "challenge_id": challenge_id,
            "market_id": market_id,
            "proceeds": str(result.proceeds),
            "invested": str(result.invested),
            "pnl": str(result.pnl),
            "new_balance": str(result.new_balance),
        },
    )
    return result
