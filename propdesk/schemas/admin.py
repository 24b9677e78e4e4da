"""Pydantic schemas for admin endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from propdesk.models import ChallengePhase, ChallengeStatus


class TraderCreate(BaseModel):
    """Request schema for creating a trader."""

    trader_id: str = Field(..., min_length=1, max_length=255, description="Unique trader ID")


class TraderResponse(BaseModel):
    """Response schema for a newly created trader (includes API key)."""

    trader_id: str
    api_key: str
    created_at: datetime


class ChallengeCreate(BaseModel):
    """Request schema for provisioning a challenge."""

    trader_id: str = Field(..., min_length=1, max_length=255)
    tier: str = Field(..., description="Tier name, e.g. 5k, 10k, 25k")


class ChallengeResponse(BaseModel):
    id: str
    owner_id: str
    tier: str | None
    phase: ChallengePhase
    status: ChallengeStatus
    status_reason: str | None = None
    starting_balance: Decimal
    current_balance: Decimal
    high_water_mark: Decimal
    start_of_day_balance: Decimal
    start_of_day_equity: Decimal | None
    rules_config: dict
    started_at: datetime
    ends_at: datetime | None
    previous_challenge_id: str | None = None

    model_config = {"from_attributes": True}


class PriceObservation(BaseModel):
    """A price tick reported to the circuit breaker."""

    venue: str = Field(..., min_length=1, max_length=50)
    price: Decimal = Field(..., ge=0, le=1)


class CrossVenueObservation(BaseModel):
    price_a: Decimal = Field(..., ge=0, le=1)
    price_b: Decimal = Field(..., ge=0, le=1)


class BreakerStatusResponse(BaseModel):
    market_id: str
    frozen: bool
    reason: str | None = None
    frozen_at: float | None = None
    expires_at: float | None = None


class ObservationResponse(BaseModel):
    market_id: str
    tripped: bool
