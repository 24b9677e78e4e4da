"""API routers."""

from fastapi import HTTPException

from propdesk.errors import TradingError


def http_error(error: TradingError) -> HTTPException:
    """Translate an engine error into an HTTP error with its code and context."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


from propdesk.routers.admin import router as admin_router
from propdesk.routers.jobs import router as jobs_router
from propdesk.routers.trading import router as trading_router

__all__ = ["admin_router", "jobs_router", "trading_router", "http_error"]
