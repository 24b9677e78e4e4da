"""Price oracle: read-only access to live prices and market resolutions.

The ingestion pipeline that fetches prices from the venues is not part of
this package. It writes JSON documents into the shared store, and
CachedPriceOracle reads them back:

    market:price:{market_id}       {"price": "0.42", "timestamp": 1700000000.0,
                                    "categories": ["politics"], "volume": "250000",
                                    "book": {"bids": [{"price": "0.41", "size": "900"}],
                                             "asks": [{"price": "0.43", "size": "750"}]}}
    market:resolution:{market_id}  {"is_resolved": true, "winning_outcome": "Yes",
                                    "resolution_price": "1"}

The book is optional and always in YES prices. Without one, fills are
priced against a synthetic book around the quote.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from decimal import Decimal

from pydantic import BaseModel, Field, ValidationError

from propdesk.state import SharedStore

logger = logging.getLogger(__name__)

PRICE_KEY = "market:price:{}"
RESOLUTION_KEY = "market:resolution:{}"


class BookLevel(BaseModel):
    price: Decimal = Field(ge=0, le=1)
    size: Decimal = Field(ge=0)  # shares


class OrderBook(BaseModel):
    """Venue depth in YES prices."""

    bids: list[BookLevel] = Field(default_factory=list)
    asks: list[BookLevel] = Field(default_factory=list)


class PriceQuote(BaseModel):
    """Latest YES price for a market."""

    price: Decimal = Field(ge=0, le=1)
    timestamp: float
    categories: list[str] = Field(default_factory=list)
    volume: Decimal | None = None
    book: OrderBook | None = None


class MarketResolution(BaseModel):
    """Outcome of a market, once the venue has settled it."""

    is_resolved: bool = False
    winning_outcome: str | None = None
    resolution_price: Decimal | None = None


class PriceOracle(ABC):
    """Source of market prices and resolution status."""

    @abstractmethod
    async def get_latest_price(self, market_id: str) -> PriceQuote | None:
        """Return the latest quote, or None if the market has no fresh price."""

    async def get_latest_prices(self, market_ids: Iterable[str]) -> dict[str, PriceQuote]:
        """Return fresh quotes for the given markets, omitting unavailable ones."""
        ids = list(dict.fromkeys(market_ids))
        quotes = await asyncio.gather(*(self.get_latest_price(m) for m in ids))
        return {m: q for m, q in zip(ids, quotes) if q is not None}

    @abstractmethod
    async def batch_get_resolution_status(
        self, market_ids: Iterable[str]
    ) -> dict[str, MarketResolution]:
        """Resolution status for many markets in a single round-trip."""


class CachedPriceOracle(PriceOracle):
    """Oracle backed by the shared cache the ingestion workers populate."""

    def __init__(
        self,
        store: SharedStore,
        max_age_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def _parse_quote(self, market_id: str, raw: str | None) -> PriceQuote | None:
        if raw is None:
            return None
        try:
            quote = PriceQuote.model_validate_json(raw)
        except ValidationError:
            logger.warning("Malformed price entry", extra={"market_id": market_id})
            return None
        age = self._clock() - quote.timestamp
        if age > self.max_age_seconds:
            logger.info(
                "Stale price ignored",
                extra={"market_id": market_id, "age_seconds": round(age, 1)},
            )
            return None
        return quote

    async def get_latest_price(self, market_id: str) -> PriceQuote | None:
        raw = await self.store.get(PRICE_KEY.format(market_id))
        return self._parse_quote(market_id, raw)

    async def get_latest_prices(self, market_ids: Iterable[str]) -> dict[str, PriceQuote]:
        ids = list(dict.fromkeys(market_ids))
        raw = await self.store.get_many(PRICE_KEY.format(m) for m in ids)
        quotes = {}
        for market_id in ids:
            quote = self._parse_quote(market_id, raw.get(PRICE_KEY.format(market_id)))
            if quote is not None:
                quotes[market_id] = quote
        return quotes

    async def batch_get_resolution_status(
        self, market_ids: Iterable[str]
    ) -> dict[str, MarketResolution]:
        ids = list(dict.fromkeys(market_ids))
        raw = await self.store.get_many(RESOLUTION_KEY.format(m) for m in ids)
        statuses = {}
        for market_id in ids:
            entry = raw.get(RESOLUTION_KEY.format(market_id))
            if entry is None:
                statuses[market_id] = MarketResolution()
                continue
            try:
                statuses[market_id] = MarketResolution.model_validate_json(entry)
            except ValidationError:
                logger.warning("Malformed resolution entry", extra={"market_id": market_id})
                statuses[market_id] = MarketResolution()
        return statuses

    # Writers used by ingestion workers and tests

    async def publish_quote(
        self,
        market_id: str,
        price: Decimal | str,
        categories: list[str] | None = None,
        volume: Decimal | str | None = None,
        timestamp: float | None = None,
        book: OrderBook | None = None,
    ) -> PriceQuote:
        quote = PriceQuote(
            price=Decimal(price),
            timestamp=self._clock() if timestamp is None else timestamp,
            categories=categories or [],
            volume=Decimal(volume) if volume is not None else None,
            book=book,
        )
        await self.store.set(PRICE_KEY.format(market_id), quote.model_dump_json())
        return quote

    async def publish_resolution(
        self,
        market_id: str,
        winning_outcome: str | None = None,
        resolution_price: Decimal | str | None = None,
    ) -> MarketResolution:
        resolution = MarketResolution(
            is_resolved=True,
            winning_outcome=winning_outcome,
            resolution_price=Decimal(resolution_price) if resolution_price is not None else None,
        )
        await self.store.set(RESOLUTION_KEY.format(market_id), resolution.model_dump_json())
        return resolution
