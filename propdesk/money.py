"""Fixed-point helpers for currency, prices and share quantities."""

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
PRICE_STEP = Decimal("0.000001")
SHARE_STEP = Decimal("0.000001")

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize a value to whole cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_price(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(PRICE_STEP, rounding=ROUND_HALF_UP)


def to_shares(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(SHARE_STEP, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(UTC).replace(tzinfo=None)
