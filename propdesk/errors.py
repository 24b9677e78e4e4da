"""Error taxonomy for the trading engine.

Every error carries a machine-readable code and the HTTP status the API
layer should answer with. Services raise these; routers translate them.
"""

from decimal import Decimal


class TradingError(Exception):
    """Base class for all trading engine errors."""

    code = "TRADING_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.context}


# ============================================================================
# Validation errors
# ============================================================================


class InvalidOrderError(TradingError):
    """Malformed order: bad amount, bad share count, price out of range."""

    code = "INVALID_ORDER"
    status_code = 400


# ============================================================================
# State-conflict errors
# ============================================================================


class ChallengeNotFoundError(TradingError):
    code = "INVALID_CHALLENGE"
    status_code = 403

    def __init__(self, challenge_id: str):
        super().__init__("Challenge not found or access denied", challenge_id=challenge_id)


class ChallengeInactiveError(TradingError):
    code = "CHALLENGE_INACTIVE"
    status_code = 409

    def __init__(self, challenge_id: str, status: str):
        super().__init__(
            f"Challenge is not active (status: {status})",
            challenge_id=challenge_id,
            status=status,
        )


class MarketFrozenError(TradingError):
    """Trading on the market is halted by the circuit breaker."""

    code = "MARKET_FROZEN"
    status_code = 423

    def __init__(self, market_id: str, reason: str | None, expires_at: str | None = None):
        super().__init__(
            f"Trading is temporarily frozen on this market: {reason or 'circuit breaker active'}",
            market_id=market_id,
            expires_at=expires_at,
        )


class MarketNearlyResolvedError(TradingError):
    code = "MARKET_RESOLVED"
    status_code = 409

    def __init__(self, market_id: str, price: Decimal):
        super().__init__(
            f"This market has nearly resolved ({price * 100:.0f}c) and can no longer be traded.",
            market_id=market_id,
            price=str(price),
        )


class PositionNotFoundError(TradingError):
    code = "POSITION_NOT_FOUND"
    status_code = 404


class PositionClosedError(TradingError):
    code = "POSITION_CLOSED"
    status_code = 409


class RiskLimitExceededError(TradingError):
    code = "RISK_LIMIT_EXCEEDED"
    status_code = 403


class InsufficientFundsError(TradingError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 400

    def __init__(self, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient funds: have {available:.2f} available, need {required:.2f}",
            required=str(required),
            available=str(available),
        )


class PhaseTransitionError(TradingError):
    code = "PHASE_TRANSITION_REJECTED"
    status_code = 409


class NotFundedError(TradingError):
    """Payouts only exist for funded accounts."""

    code = "NOT_FUNDED"
    status_code = 409

    def __init__(self, challenge_id: str, phase: str):
        super().__init__(
            f"Payouts are only available on funded accounts (phase: {phase})",
            challenge_id=challenge_id,
            phase=phase,
        )


# ============================================================================
# Execution errors
# ============================================================================


class InsufficientLiquidityError(TradingError):
    """The order book cannot absorb the order."""

    code = "INSUFFICIENT_LIQUIDITY"
    status_code = 400


class SlippageExceededError(TradingError):
    code = "SLIPPAGE_EXCEEDED"
    status_code = 400

    def __init__(self, slippage: Decimal, max_slippage: Decimal):
        super().__init__(
            f"Slippage {slippage * 100:.2f}% exceeds max {max_slippage * 100:.2f}%",
            slippage=str(slippage),
            max_slippage=str(max_slippage),
        )


# ============================================================================
# Hard invariant violations
# ============================================================================


class NegativeBalanceError(TradingError):
    """A deduction would push the balance below zero. Never clamped."""

    code = "NEGATIVE_BALANCE"
    status_code = 409

    def __init__(self, challenge_id: str, new_balance: Decimal):
        super().__init__(
            f"Balance would go negative: ${new_balance:.2f}. Trade rejected.",
            challenge_id=challenge_id,
        )


# ============================================================================
# Upstream unavailability
# ============================================================================


class MarketDataUnavailableError(TradingError):
    code = "NO_MARKET_DATA"
    status_code = 503
    retryable = True

    def __init__(self, market_id: str):
        super().__init__(
            "Market data unavailable. The market may be offline; retry shortly.",
            market_id=market_id,
        )


class DuplicateRequestError(TradingError):
    """A request with the same idempotency key is still being processed."""

    code = "DUPLICATE_REQUEST"
    status_code = 409
    retryable = True
