"""Admin API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.database import get_session
from propdesk.deps import get_sentinel
from propdesk.errors import TradingError
from propdesk.models import ChallengeStatus
from propdesk.routers import http_error
from propdesk.schemas.admin import (
    BreakerStatusResponse,
    ChallengeCreate,
    ChallengeResponse,
    CrossVenueObservation,
    ObservationResponse,
    PriceObservation,
    TraderCreate,
    TraderResponse,
)
from propdesk.services import admin as admin_service
from propdesk.services import lifecycle
from propdesk.services.circuit_breaker import ArbitrageSentinel

router = APIRouter()


# ============================================================================
# Traders and challenges
# ============================================================================


@router.post(
    "/traders",
    response_model=TraderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new trader",
)
async def create_trader(
    data: TraderCreate,
    session: AsyncSession = Depends(get_session),
) -> TraderResponse:
    """Register a new trader.

    Returns the trader details including the API key.
    **Store the API key securely - it cannot be retrieved later.**
    """
    try:
        trader, api_key = await admin_service.create_trader(session, data.trader_id)
        return TraderResponse(
            trader_id=trader.id,
            api_key=api_key,
            created_at=trader.created_at,
        )
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Trader with ID '{data.trader_id}' already exists",
        )


@router.post(
    "/challenges",
    response_model=ChallengeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Provision a challenge",
)
async def create_challenge(
    data: ChallengeCreate,
    session: AsyncSession = Depends(get_session),
) -> ChallengeResponse:
    """Provision a new evaluation challenge for a trader.

    - **trader_id**: Owner of the challenge
    - **tier**: Tier from the tier table (5k, 10k, 25k)
    """
    try:
        challenge = await admin_service.create_challenge(session, data.trader_id, data.tier)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ChallengeResponse.model_validate(challenge)


@router.get(
    "/challenges",
    response_model=list[ChallengeResponse],
    summary="List challenges",
)
async def list_challenges(
    status_filter: ChallengeStatus | None = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> list[ChallengeResponse]:
    challenges = await admin_service.list_challenges(session, status_filter)
    return [ChallengeResponse.model_validate(c) for c in challenges]


@router.post(
    "/challenges/{challenge_id}/advance",
    response_model=ChallengeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Advance a passed challenge to its next phase",
)
async def advance_challenge(
    challenge_id: str,
    session: AsyncSession = Depends(get_session),
) -> ChallengeResponse:
    """Create the next-phase challenge (verification, then funded) for a passed one."""
    try:
        successor = await lifecycle.advance_phase(session, challenge_id)
    except TradingError as e:
        await session.rollback()
        raise http_error(e)
    return ChallengeResponse.model_validate(successor)


# ============================================================================
# Circuit breaker
# ============================================================================


@router.get(
    "/circuit-breaker/{market_id}",
    response_model=BreakerStatusResponse,
    summary="Get circuit breaker status",
)
async def get_breaker_status(
    market_id: str,
    sentinel: ArbitrageSentinel = Depends(get_sentinel),
) -> BreakerStatusResponse:
    freeze = await sentinel.is_market_frozen(market_id)
    return BreakerStatusResponse(market_id=market_id, **freeze.to_dict())


@router.post(
    "/circuit-breaker/{market_id}/observe",
    response_model=ObservationResponse,
    summary="Report a price tick",
)
async def observe_price(
    market_id: str,
    data: PriceObservation,
    sentinel: ArbitrageSentinel = Depends(get_sentinel),
) -> ObservationResponse:
    """Feed a price update to the sentinel; a rapid move freezes the market."""
    tripped = await sentinel.record_price_update(market_id, data.venue, data.price)
    return ObservationResponse(market_id=market_id, tripped=tripped)


@router.post(
    "/circuit-breaker/{market_id}/cross-venue",
    response_model=ObservationResponse,
    summary="Compare prices across venues",
)
async def check_cross_venue(
    market_id: str,
    data: CrossVenueObservation,
    sentinel: ArbitrageSentinel = Depends(get_sentinel),
) -> ObservationResponse:
    tripped = await sentinel.check_cross_venue_divergence(market_id, data.price_a, data.price_b)
    return ObservationResponse(market_id=market_id, tripped=tripped)


@router.delete(
    "/circuit-breaker/{market_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear a market freeze",
)
async def clear_breaker(
    market_id: str,
    sentinel: ArbitrageSentinel = Depends(get_sentinel),
) -> None:
    await sentinel.clear(market_id)
