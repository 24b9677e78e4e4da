"""Scheduled job endpoints, called by an external cron.

Every route requires `Authorization: Bearer $CRON_SECRET`.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.auth import verify_cron_secret
from propdesk.database import get_session
from propdesk.deps import get_oracle
from propdesk.oracle import PriceOracle
from propdesk.schemas.jobs import BalanceAuditResponse, DailyResetResponse, SettlementResponse
from propdesk.services.audit import audit_balances
from propdesk.services.lifecycle import run_daily_reset
from propdesk.services.settlement import settle_resolved_positions

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post(
    "/settlement",
    response_model=SettlementResponse,
    summary="Settle positions on resolved markets",
)
async def run_settlement(
    session: AsyncSession = Depends(get_session),
    oracle: PriceOracle = Depends(get_oracle),
) -> SettlementResponse:
    """Close open positions whose markets have resolved and credit proceeds.

    Per-position failures are returned in **errors**; the sweep itself
    still succeeds.
    """
    result = await settle_resolved_positions(session, oracle)
    return SettlementResponse.model_validate(result)


@router.post(
    "/daily-reset",
    response_model=DailyResetResponse,
    summary="Snapshot start-of-day balances",
)
async def daily_reset(
    session: AsyncSession = Depends(get_session),
    oracle: PriceOracle = Depends(get_oracle),
) -> DailyResetResponse:
    result = await run_daily_reset(session, oracle)
    return DailyResetResponse.model_validate(result)


@router.get(
    "/balance-audit",
    response_model=BalanceAuditResponse,
    summary="Audit balances against trade history",
)
async def balance_audit(
    session: AsyncSession = Depends(get_session),
) -> BalanceAuditResponse:
    report = await audit_balances(session)
    return BalanceAuditResponse.model_validate(report)
