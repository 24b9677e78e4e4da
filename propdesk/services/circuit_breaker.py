"""Arbitrage sentinel (circuit breaker).

Guards against latency arbitrage: when a market's price jumps faster than
the venues can converge, typically on breaking news, trading on that
market is frozen for a short cooldown.

States per market: NORMAL -> FROZEN -> NORMAL. The FROZEN state is a
store entry with a TTL, so it ends on its own; an admin can also clear it.
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal

from redis.exceptions import RedisError

from propdesk import telemetry
from propdesk.config import BreakerConfig
from propdesk.state import SharedStore

logger = logging.getLogger(__name__)

FREEZE_KEY = "circuit_breaker:{}"
HISTORY_KEY = "price_history:{}:{}"

UNAVAILABLE_REASON = "circuit breaker state unavailable"


@dataclass(frozen=True)
class FreezeStatus:
    """Whether a market is frozen and, if so, why and until when.

    Times are epoch seconds.
    """

    frozen: bool
    reason: str | None = None
    frozen_at: float | None = None
    expires_at: float | None = None

    def expires_at_iso(self) -> str | None:
        if self.expires_at is None:
            return None
        return datetime.fromtimestamp(self.expires_at, UTC).isoformat()

    def to_dict(self) -> dict:
        return asdict(self)


NOT_FROZEN = FreezeStatus(frozen=False)


class ArbitrageSentinel:
    """Watches price updates and freezes markets that move too fast."""

    def __init__(
        self,
        store: SharedStore,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or BreakerConfig()
        self._clock = clock

    async def is_market_frozen(self, market_id: str) -> FreezeStatus:
        """Read the freeze state of a market.

        If the store cannot be read, the market is reported frozen
        (fail closed) unless the breaker is configured to fail open.
        """
        try:
            raw = await self.store.get(FREEZE_KEY.format(market_id))
        except (RedisError, OSError):
            if self.config.fail_closed:
                logger.error(
                    "Circuit breaker state unavailable, treating market as frozen",
                    extra={"market_id": market_id},
                    exc_info=True,
                )
                return FreezeStatus(frozen=True, reason=UNAVAILABLE_REASON)
            logger.warning(
                "Circuit breaker state unavailable, allowing trade",
                extra={"market_id": market_id},
                exc_info=True,
            )
            return NOT_FROZEN

        if raw is None:
            return NOT_FROZEN

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return FreezeStatus(frozen=True, reason="Circuit breaker active")
        return FreezeStatus(
            frozen=True,
            reason=data.get("reason"),
            frozen_at=data.get("frozen_at"),
            expires_at=data.get("expires_at"),
        )

    async def record_price_update(self, market_id: str, venue: str, price: Decimal) -> bool:
        """Record a price tick and freeze the market on a rapid move.

        Called by the ingestion side on every price update.

        Returns:
            True if this update tripped the breaker
        """
        price = Decimal(price)
        history_key = HISTORY_KEY.format(venue, market_id)
        now = self._clock()
        tripped = False

        last = await self.store.get(history_key)
        if last is not None:
            try:
                snapshot = json.loads(last)
                last_price = Decimal(snapshot["price"])
                last_ts = float(snapshot["timestamp"])
            except (json.JSONDecodeError, KeyError, ArithmeticError, ValueError):
                logger.warning("Discarding malformed price history", extra={"key": history_key})
            else:
                elapsed_ms = (now - last_ts) * 1000
                delta = abs(price - last_price)
                if (
                    elapsed_ms <= self.config.window_ms
                    and delta >= self.config.divergence_threshold
                ):
                    await self.trigger(
                        market_id,
                        f"Rapid price movement: {last_price * 100:.0f}c -> {price * 100:.0f}c "
                        f"in {elapsed_ms:.0f}ms",
                        trigger="velocity",
                    )
                    tripped = True

        await self.store.set(
            history_key,
            json.dumps({"price": str(price), "timestamp": now}),
            ttl_seconds=self.config.history_ttl_seconds,
        )
        return tripped

    async def check_cross_venue_divergence(
        self, event_id: str, price_a: Decimal, price_b: Decimal
    ) -> bool:
        """Freeze an event when two venues disagree on its price.

        Returns:
            True if the divergence tripped the breaker
        """
        divergence = abs(Decimal(price_a) - Decimal(price_b))
        if divergence < self.config.divergence_threshold:
            return False
        await self.trigger(
            event_id,
            f"Cross-venue divergence: {Decimal(price_a) * 100:.0f}c vs "
            f"{Decimal(price_b) * 100:.0f}c (diff: {divergence * 100:.0f}c)",
            trigger="divergence",
        )
        return True

    async def trigger(self, market_id: str, reason: str, trigger: str = "manual") -> FreezeStatus:
        """Freeze a market for the configured cooldown."""
        now = self._clock()
        status = FreezeStatus(
            frozen=True,
            reason=reason,
            frozen_at=now,
            expires_at=now + self.config.cooldown_seconds,
        )
        await self.store.set(
            FREEZE_KEY.format(market_id),
            json.dumps({"reason": reason, "frozen_at": now, "expires_at": status.expires_at}),
            ttl_seconds=self.config.cooldown_seconds,
        )
        logger.warning(
            "Circuit breaker triggered",
            extra={
                "market_id": market_id,
                "reason": reason,
                "cooldown_seconds": self.config.cooldown_seconds,
            },
        )
        telemetry.record_breaker_trip(market_id, trigger)
        return status

    async def clear(self, market_id: str) -> None:
        """Lift a freeze before its cooldown ends."""
        await self.store.delete(FREEZE_KEY.format(market_id))
        logger.info("Circuit breaker cleared", extra={"market_id": market_id})
