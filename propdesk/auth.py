"""Authentication for trader and scheduled-job endpoints."""

import secrets

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.config import Settings, get_settings
from propdesk.database import get_session
from propdesk.models import Trader
from propdesk.services.admin import hash_api_key

# API key header scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def get_current_trader(
    api_key: str | None = Security(api_key_header),
    session: AsyncSession = Depends(get_session),
) -> Trader:
    """Validate API key and return the associated trader.

    Args:
        api_key: API key from X-API-Key header
        session: Database session

    Returns:
        The authenticated trader

    Raises:
        HTTPException: If API key is missing or invalid
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    key_hash = hash_api_key(api_key)
    result = await session.execute(select(Trader).where(Trader.api_key_hash == key_hash))
    trader = result.scalar_one_or_none()

    if not trader:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return trader


async def verify_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Gate scheduled jobs behind `Authorization: Bearer $CRON_SECRET`.

    Without a configured secret the jobs are disabled rather than open.
    """
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CRON_SECRET is not configured",
        )
    expected = f"Bearer {settings.cron_secret}"
    if authorization is None or not secrets.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
