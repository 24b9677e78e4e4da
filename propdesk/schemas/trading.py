"""Pydantic schemas for trading endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from propdesk.models import (
    ChallengePhase,
    ChallengeStatus,
    Direction,
    PositionStatus,
    TradeSide,
)
from propdesk.services.risk import RiskVerdict


# ============================================================================
# Requests
# ============================================================================


class TradeCreate(BaseModel):
    """Request schema for executing a trade."""

    market_id: str = Field(..., min_length=1, max_length=255, description="Market identifier")
    side: TradeSide = Field(..., description="BUY or SELL")
    direction: Direction = Field(default=Direction.YES, description="YES or NO")
    amount: Decimal | None = Field(
        default=None, gt=0, description="Dollars to spend (BUY) or raise (SELL)"
    )
    shares: Decimal | None = Field(
        default=None, gt=0, description="Shares to sell (SELL only)"
    )
    max_slippage: Decimal | None = Field(
        default=None, ge=0, le=1, description="Reject fills further than this from the best level"
    )

    @model_validator(mode="after")
    def amount_or_shares(self) -> "TradeCreate":
        if self.side == TradeSide.BUY:
            if self.amount is None or self.shares is not None:
                raise ValueError("BUY orders require amount and no shares")
        elif (self.amount is None) == (self.shares is None):
            raise ValueError("SELL orders require exactly one of amount or shares")
        return self


# ============================================================================
# Responses
# ============================================================================


class TradeResponse(BaseModel):
    id: str
    position_id: str
    market_id: str
    side: TradeSide
    direction: Direction
    amount: Decimal
    price: Decimal
    shares: Decimal
    realized_pnl: Decimal | None = None
    executed_at: datetime
    closure_reason: str | None = None

    model_config = {"from_attributes": True}


class PositionResponse(BaseModel):
    """A position, with live valuation when it is open and priced."""

    id: str
    market_id: str
    direction: Direction
    status: PositionStatus
    entry_price: Decimal
    shares: Decimal
    size_amount: Decimal
    categories: list[str] = []
    opened_at: datetime
    closed_at: datetime | None = None
    closed_price: Decimal | None = None
    pnl: Decimal | None = None
    current_price: Decimal | None = None
    market_value: Decimal | None = None
    unrealized_pnl: Decimal | None = None

    model_config = {"from_attributes": True}


class PositionListResponse(BaseModel):
    positions: list[PositionResponse]


class RiskResponse(BaseModel):
    """Risk snapshot of a challenge at live prices."""

    challenge_id: str
    phase: ChallengePhase
    status: ChallengeStatus
    cash: Decimal
    equity: Decimal
    high_water_mark: Decimal
    total_pnl: Decimal
    drawdown_amount: Decimal
    drawdown_usage: Decimal
    daily_pnl: Decimal | None
    daily_drawdown_amount: Decimal
    daily_drawdown_usage: Decimal
    profit_progress: Decimal
    verdict: RiskVerdict
    reason: str | None = None


class TradeExecutionResponse(BaseModel):
    success: bool = True
    trade: TradeResponse
    position: PositionResponse
    new_balance: Decimal
    realized_pnl: Decimal | None = None
    slippage: Decimal | None = None
    challenge_status: ChallengeStatus
    verdict: RiskVerdict


class CloseResponse(BaseModel):
    success: bool = True
    proceeds: Decimal
    invested: Decimal
    pnl: Decimal
    trade: TradeResponse
    new_balance: Decimal
    slippage: Decimal | None = None
    challenge_status: ChallengeStatus


class PayoutResponse(BaseModel):
    """Payout estimate for a funded challenge, from realized cash."""

    challenge_id: str
    gross_profit: Decimal
    payout_cap: Decimal
    capped_profit: Decimal
    profit_split_pct: Decimal
    net_payout: Decimal
    firm_share: Decimal
