"""Order book simulation.

Every market has one canonical quote. Fills are priced by walking a book
around it: the venue's own book when ingestion published a usable one,
otherwise a synthetic book with a fixed spread and depth per level.

Books are kept in YES prices. NO orders trade against the opposite side
of the YES book at 1 - price:
1. BUY YES takes YES asks
2. SELL YES hits YES bids
3. BUY NO takes YES bids (a YES bid at p is a NO ask at 1 - p)
4. SELL NO hits YES asks
"""

from dataclasses import dataclass
from decimal import Decimal

from propdesk.config import BookConfig
from propdesk.errors import InsufficientLiquidityError
from propdesk.models import Direction, TradeSide
from propdesk.money import ONE, ZERO, to_price, to_shares
from propdesk.oracle import BookLevel, OrderBook, PriceQuote

MIN_LEVEL_PRICE = Decimal("0.01")
MAX_LEVEL_PRICE = Decimal("0.99")

# A venue book this wide, or asking this high, has no real liquidity
DEAD_SPREAD = Decimal("0.50")
DEAD_ASK = Decimal("0.90")

# Unfilled dollars at or below this are rounding dust
DUST = Decimal("1")

SLIPPAGE_STEP = Decimal("0.000001")


@dataclass(frozen=True)
class Fill:
    """Simulated execution in prices of the side actually traded."""

    price: Decimal  # volume-weighted average
    shares: Decimal
    top_price: Decimal
    slippage: Decimal  # |price - top_price| / top_price
    source: str  # "venue" or "synthetic"


def build_synthetic_book(price: Decimal, config: BookConfig) -> OrderBook:
    """Symmetric book of `config.levels` levels around a YES price."""
    bids, asks = [], []
    for n in range(1, config.levels + 1):
        offset = config.spread * n
        bids.append(
            BookLevel(price=max(MIN_LEVEL_PRICE, price - offset), size=config.depth_per_level)
        )
        asks.append(
            BookLevel(price=min(MAX_LEVEL_PRICE, price + offset), size=config.depth_per_level)
        )
    return OrderBook(bids=bids, asks=asks)


def is_book_dead(book: OrderBook) -> bool:
    """True when a book has no side, a spread over 50c, or asks from 90c."""
    if not book.bids or not book.asks:
        return True
    best_bid = max(level.price for level in book.bids)
    best_ask = min(level.price for level in book.asks)
    return best_ask - best_bid > DEAD_SPREAD or best_ask >= DEAD_ASK


def book_for_quote(quote: PriceQuote, config: BookConfig) -> tuple[OrderBook, str]:
    """The book to fill against, and where it came from."""
    if quote.book is not None and not is_book_dead(quote.book):
        return quote.book, "venue"
    return build_synthetic_book(quote.price, config), "synthetic"


def _levels(book: OrderBook, side: TradeSide, direction: Direction) -> list[tuple[Decimal, Decimal]]:
    """(price, size) levels for one order, best first, in the traded side's prices."""
    takes_asks = (side == TradeSide.BUY) == (direction == Direction.YES)
    if takes_asks:
        levels = sorted(book.asks, key=lambda level: level.price)
    else:
        levels = sorted(book.bids, key=lambda level: level.price, reverse=True)

    result = []
    for level in levels:
        price = ONE - level.price if direction == Direction.NO else level.price
        if price > 0 and level.size > 0:
            result.append((price, level.size))
    return result


def simulate_fill(
    book: OrderBook,
    side: TradeSide,
    direction: Direction,
    *,
    amount: Decimal | None = None,
    shares: Decimal | None = None,
    source: str = "synthetic",
) -> Fill:
    """Walk the book for a dollar amount or a share count.

    Args:
        book: YES-price order book
        side: BUY or SELL
        direction: Side of the market being traded
        amount: Dollars to fill (exclusive with shares)
        shares: Shares to fill (exclusive with amount)
        source: Recorded on the fill

    Returns:
        Fill with the average price, the shares filled and the slippage
        from the best level

    Raises:
        InsufficientLiquidityError: If the book is empty or too thin
    """
    if (amount is None) == (shares is None):
        raise ValueError("simulate_fill takes exactly one of amount or shares")

    levels = _levels(book, side, direction)
    if not levels:
        raise InsufficientLiquidityError("No liquidity")

    filled = ZERO
    cost = ZERO
    if amount is not None:
        remaining = amount
        for price, size in levels:
            if remaining <= 0:
                break
            level_cost = price * size
            if remaining >= level_cost:
                filled += size
                cost += level_cost
                remaining -= level_cost
            else:
                filled += remaining / price
                cost += remaining
                remaining = ZERO
        if remaining > DUST:
            raise InsufficientLiquidityError(
                f"Insufficient depth (unfilled: ${remaining:.2f})", unfilled=str(remaining)
            )
        if remaining > 0:
            # Dust goes at the last level's price
            filled += remaining / levels[-1][0]
            cost += remaining
    else:
        remaining = shares
        for price, size in levels:
            if remaining <= 0:
                break
            take = min(remaining, size)
            filled += take
            cost += take * price
            remaining -= take
        if remaining > 0:
            raise InsufficientLiquidityError(
                f"Insufficient depth (unfilled: {remaining} shares)", unfilled=str(remaining)
            )

    average = cost / filled
    top_price = levels[0][0]
    return Fill(
        price=to_price(average),
        shares=to_shares(filled),
        top_price=top_price,
        slippage=(abs(average - top_price) / top_price).quantize(SLIPPAGE_STEP),
        source=source,
    )
