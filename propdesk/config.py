"""Runtime configuration for the trading engine.

All settings come from environment variables so the same build runs
locally (SQLite, in-process state) and in production (PostgreSQL, Redis).
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class BreakerConfig:
    """Thresholds for the arbitrage sentinel."""

    divergence_threshold: Decimal = Decimal("0.05")  # 5 percentage points
    window_ms: int = 1000
    cooldown_seconds: int = 30
    history_ttl_seconds: int = 60
    fail_closed: bool = True


@dataclass(frozen=True)
class BookConfig:
    """Synthetic order book built around the canonical price.

    Used whenever a quote carries no usable venue book. Level n sits
    n * spread away from the quote on each side; depth is in shares.
    """

    spread: Decimal = Decimal("0.02")
    depth_per_level: Decimal = Decimal("5000")
    levels: int = 3


@dataclass(frozen=True)
class Settings:
    """Engine settings resolved from the environment."""

    database_url: str = "sqlite+aiosqlite:///./propdesk.db"
    sql_echo: bool = False
    redis_url: str | None = None
    cron_secret: str | None = None
    price_max_age_seconds: int = 300
    large_transaction_threshold: Decimal = Decimal("10000")
    idempotency_ttl_seconds: int = 60
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    book: BookConfig = field(default_factory=BookConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        breaker = BreakerConfig(
            divergence_threshold=Decimal(os.getenv("BREAKER_DIVERGENCE_THRESHOLD", "0.05")),
            window_ms=int(os.getenv("BREAKER_WINDOW_MS", "1000")),
            cooldown_seconds=int(os.getenv("BREAKER_COOLDOWN_SECONDS", "30")),
            fail_closed=_env_bool("BREAKER_FAIL_CLOSED", True),
        )
        book = BookConfig(
            spread=Decimal(os.getenv("BOOK_SPREAD", "0.02")),
            depth_per_level=Decimal(os.getenv("BOOK_DEPTH_PER_LEVEL", "5000")),
            levels=int(os.getenv("BOOK_LEVELS", "3")),
        )
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            sql_echo=os.getenv("SQLALCHEMY_ECHO") == "1",
            redis_url=os.getenv("REDIS_URL") or None,
            cron_secret=os.getenv("CRON_SECRET") or None,
            price_max_age_seconds=int(os.getenv("PRICE_MAX_AGE_SECONDS", "300")),
            large_transaction_threshold=Decimal(
                os.getenv("LARGE_TRANSACTION_THRESHOLD", "10000")
            ),
            idempotency_ttl_seconds=int(os.getenv("IDEMPOTENCY_TTL_SECONDS", "60")),
            breaker=breaker,
            book=book,
        )


settings = Settings.from_env()


def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""
    return settings
