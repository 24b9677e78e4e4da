"""Pydantic schemas for scheduled job endpoints."""

from decimal import Decimal

from pydantic import BaseModel


class SettlementResponse(BaseModel):
    positions_checked: int
    positions_settled: int
    total_pnl_settled: Decimal
    errors: list[str]

    model_config = {"from_attributes": True}


class DailyResetResponse(BaseModel):
    challenges_checked: int
    challenges_reset: int
    challenges_skipped: int
    challenges_expired: int
    errors: list[str]

    model_config = {"from_attributes": True}


class DiscrepancyResponse(BaseModel):
    challenge_id: str
    owner_id: str
    starting_balance: Decimal
    stored_balance: Decimal
    expected_balance: Decimal
    discrepancy: Decimal
    severity: str

    model_config = {"from_attributes": True}


class BalanceAuditResponse(BaseModel):
    challenges_audited: int
    healthy: bool
    discrepancies: list[DiscrepancyResponse]

    model_config = {"from_attributes": True}
