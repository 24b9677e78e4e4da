"""Trading API endpoints - requires authentication."""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.auth import get_current_trader
from propdesk.config import Settings, get_settings
from propdesk.database import get_session
from propdesk.deps import get_idempotency_guard, get_oracle, get_sentinel
from propdesk.errors import TradingError
from propdesk.models import Position, PositionStatus, Trader
from propdesk.oracle import PriceOracle
from propdesk.routers import http_error
from propdesk.schemas.trading import (
    CloseResponse,
    PayoutResponse,
    PositionListResponse,
    PositionResponse,
    RiskResponse,
    TradeCreate,
    TradeExecutionResponse,
    TradeResponse,
)
from propdesk.services import executor
from propdesk.services import payout as payout_service
from propdesk.services import portfolio as portfolio_service
from propdesk.services.circuit_breaker import ArbitrageSentinel
from propdesk.services.idempotency import IdempotencyGuard
from propdesk.services.orderbook import Fill
from propdesk.services.portfolio import PositionValuation

logger = logging.getLogger(__name__)

router = APIRouter()


def _position_response(
    position: Position, valuation: PositionValuation | None = None
) -> PositionResponse:
    response = PositionResponse.model_validate(position)
    if valuation is not None:
        response.current_price = valuation.current_price
        response.market_value = valuation.market_value
        response.unrealized_pnl = valuation.unrealized_pnl
    return response


def _slippage(fill: Fill | None) -> Decimal | None:
    return fill.slippage if fill is not None else None


# ============================================================================
# Trade endpoints
# ============================================================================


@router.post(
    "/challenges/{challenge_id}/trades",
    response_model=TradeExecutionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Execute a trade",
)
async def execute_trade(
    challenge_id: str,
    data: TradeCreate,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    trader: Trader = Depends(get_current_trader),
    session: AsyncSession = Depends(get_session),
    oracle: PriceOracle = Depends(get_oracle),
    sentinel: ArbitrageSentinel = Depends(get_sentinel),
    guard: IdempotencyGuard = Depends(get_idempotency_guard),
    settings: Settings = Depends(get_settings),
) -> TradeExecutionResponse:
    """Buy or sell shares of a market outcome.

    - **market_id**: Market to trade
    - **side**: BUY or SELL
    - **direction**: YES or NO
    - **amount**: Dollars to spend (BUY) or raise (SELL)
    - **shares**: Shares to sell (SELL only, instead of amount)
    - **max_slippage**: Optional cap on the fill's distance from the best price

    Send an **Idempotency-Key** header to make retries safe.
    """
    scope = f"{trader.id}:{challenge_id}"
    if idempotency_key:
        try:
            cached = await guard.claim(scope, idempotency_key)
        except TradingError as e:
            raise http_error(e)
        if cached is not None:
            return TradeExecutionResponse.model_validate(cached)

    try:
        result = await executor.execute_trade(
            session,
            oracle,
            sentinel,
            owner_id=trader.id,
            challenge_id=challenge_id,
            market_id=data.market_id,
            side=data.side,
            direction=data.direction,
            amount=data.amount,
            shares=data.shares,
            max_slippage=data.max_slippage,
            book_config=settings.book,
        )
    except TradingError as e:
        if idempotency_key:
            await guard.release(scope, idempotency_key)
        raise http_error(e)
    except Exception:
        # Unexpected failures free the key too, so the client can retry
        if idempotency_key:
            await guard.release(scope, idempotency_key)
        raise

    response = TradeExecutionResponse(
        trade=TradeResponse.model_validate(result.trade),
        position=_position_response(result.position),
        new_balance=result.new_balance,
        realized_pnl=result.realized_pnl,
        slippage=_slippage(result.fill),
        challenge_status=result.challenge_status,
        verdict=result.risk.verdict,
    )
    if idempotency_key:
        await guard.complete(scope, idempotency_key, response.model_dump(mode="json"))
    return response


@router.post(
    "/challenges/{challenge_id}/positions/{position_id}/close",
    response_model=CloseResponse,
    summary="Close a position",
)
async def close_position(
    challenge_id: str,
    position_id: str,
    max_slippage: Decimal | None = Query(default=None, ge=0, le=1),
    trader: Trader = Depends(get_current_trader),
    session: AsyncSession = Depends(get_session),
    oracle: PriceOracle = Depends(get_oracle),
    sentinel: ArbitrageSentinel = Depends(get_sentinel),
    settings: Settings = Depends(get_settings),
) -> CloseResponse:
    """Sell every share of a position against the live order book."""
    try:
        result = await executor.close_position(
            session,
            oracle,
            sentinel,
            owner_id=trader.id,
            challenge_id=challenge_id,
            position_id=position_id,
            max_slippage=max_slippage,
            book_config=settings.book,
        )
    except TradingError as e:
        raise http_error(e)

    return CloseResponse(
        proceeds=result.proceeds,
        invested=result.invested,
        pnl=result.pnl,
        trade=TradeResponse.model_validate(result.trade),
        new_balance=result.new_balance,
        slippage=_slippage(result.fill),
        challenge_status=result.challenge_status,
    )


# ============================================================================
# Read endpoints
# ============================================================================


@router.get(
    "/challenges/{challenge_id}/positions",
    response_model=PositionListResponse,
    summary="List positions",
)
async def list_positions(
    challenge_id: str,
    status_filter: PositionStatus | None = Query(
        default=None, alias="status", description="Filter by position status"
    ),
    trader: Trader = Depends(get_current_trader),
    session: AsyncSession = Depends(get_session),
    oracle: PriceOracle = Depends(get_oracle),
) -> PositionListResponse:
    """Get positions for a challenge, valuing open ones at live prices."""
    try:
        challenge = await portfolio_service.get_owned_challenge(session, trader.id, challenge_id)
    except TradingError as e:
        raise http_error(e)

    positions = await portfolio_service.list_positions(session, challenge.id, status_filter)
    valuation = await portfolio_service.get_equity(session, oracle, challenge)
    by_id = {v.position_id: v for v in valuation.positions}
    return PositionListResponse(
        positions=[_position_response(p, by_id.get(p.id)) for p in positions]
    )


@router.get(
    "/challenges/{challenge_id}/risk",
    response_model=RiskResponse,
    summary="Get risk snapshot",
)
async def get_risk(
    challenge_id: str,
    trader: Trader = Depends(get_current_trader),
    session: AsyncSession = Depends(get_session),
    oracle: PriceOracle = Depends(get_oracle),
) -> RiskResponse:
    """Drawdown, daily loss and profit progress at live prices.

    **daily_pnl** is null until the first daily reset of the challenge.
    """
    try:
        challenge = await portfolio_service.get_owned_challenge(session, trader.id, challenge_id)
    except TradingError as e:
        raise http_error(e)

    valuation, snapshot = await portfolio_service.get_risk_snapshot(session, oracle, challenge)
    return RiskResponse(
        challenge_id=challenge.id,
        phase=challenge.phase,
        status=challenge.status,
        cash=valuation.cash,
        equity=snapshot.equity,
        high_water_mark=max(challenge.high_water_mark, snapshot.equity),
        total_pnl=snapshot.total_pnl,
        drawdown_amount=snapshot.drawdown_amount,
        drawdown_usage=snapshot.drawdown_usage,
        daily_pnl=snapshot.daily_pnl,
        daily_drawdown_amount=snapshot.daily_drawdown_amount,
        daily_drawdown_usage=snapshot.daily_drawdown_usage,
        profit_progress=snapshot.profit_progress,
        verdict=snapshot.verdict,
        reason=snapshot.reason,
    )


@router.get(
    "/challenges/{challenge_id}/payout",
    response_model=PayoutResponse,
    summary="Estimate payout",
)
async def get_payout(
    challenge_id: str,
    trader: Trader = Depends(get_current_trader),
    session: AsyncSession = Depends(get_session),
) -> PayoutResponse:
    """Trader and firm shares of realized profit on a funded challenge."""
    try:
        payout = await payout_service.get_payout_estimate(session, trader.id, challenge_id)
    except TradingError as e:
        raise http_error(e)

    return PayoutResponse(
        challenge_id=challenge_id,
        gross_profit=payout.gross_profit,
        payout_cap=payout.payout_cap,
        capped_profit=payout.capped_profit,
        profit_split_pct=payout.profit_split_pct,
        net_payout=payout.net_payout,
        firm_share=payout.firm_share,
    )
