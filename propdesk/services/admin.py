"""Admin service - trader onboarding and challenge provisioning."""

import hashlib
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.models import Challenge, ChallengeStatus, Trader
from propdesk.services.lifecycle import provision_challenge


def generate_api_key() -> str:
    """Generate a secure API key for a trader.

    Returns:
        A URL-safe random string (sk_ prefix + 43 characters)
    """
    return f"sk_{secrets.token_urlsafe(32)}"


def hash_api_key(api_key: str) -> str:
    """Hash an API key for secure storage.

    Args:
        api_key: The plain API key

    Returns:
        SHA-256 hash of the API key (64 hex characters)
    """
    return hashlib.sha256(api_key.encode()).hexdigest()


async def create_trader(session: AsyncSession, trader_id: str) -> tuple[Trader, str]:
    """Create a new trader.

    Args:
        session: Database session
        trader_id: Unique trader identifier

    Returns:
        Tuple of (created trader, API key)

    Raises:
        IntegrityError: If trader_id already exists
    """
    api_key = generate_api_key()
    trader = Trader(id=trader_id, api_key_hash=hash_api_key(api_key))
    session.add(trader)
    await session.commit()
    await session.refresh(trader)
    return trader, api_key


async def create_challenge(session: AsyncSession, trader_id: str, tier: str) -> Challenge:
    """Provision a new evaluation challenge for a trader after payment.

    Raises:
        LookupError: If the trader does not exist
        ValueError: If the tier is unknown
    """
    trader = await session.get(Trader, trader_id)
    if trader is None:
        raise LookupError(f"Trader '{trader_id}' not found")
    return await provision_challenge(session, owner_id=trader_id, tier=tier)


async def list_challenges(
    session: AsyncSession, status: ChallengeStatus | None = None
) -> list[Challenge]:
    query = select(Challenge).order_by(Challenge.started_at, Challenge.id)
    if status is not None:
        query = query.where(Challenge.status == status)
    result = await session.execute(query)
    return list(result.scalars().all())
