"""
FastAPI application entry point.

Run with: uvicorn propdesk.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from propdesk import telemetry
from propdesk._version import VERSION
from propdesk.config import settings
from propdesk.database import init_db

# Import models to ensure they're registered with SQLAlchemy
from propdesk.models import Challenge, Position, Trade, Trader  # noqa: F401
from propdesk.oracle import CachedPriceOracle
from propdesk.routers import admin_router, jobs_router, trading_router
from propdesk.services.circuit_breaker import ArbitrageSentinel
from propdesk.services.idempotency import IdempotencyGuard
from propdesk.state import MemoryStore, RedisStore, SharedStore

logger = logging.getLogger(__name__)


def build_store() -> SharedStore:
    """Redis when REDIS_URL is set, otherwise an in-process store."""
    if settings.redis_url:
        return RedisStore.from_url(settings.redis_url)
    logger.warning("REDIS_URL not set, using in-process shared state")
    return MemoryStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup: create tables, build the shared store and the services that
    use it, initialize telemetry.
    Shutdown: close the store.
    """
    await init_db()
    logger.info("Database initialized")

    store = build_store()
    app.state.store = store
    app.state.oracle = CachedPriceOracle(store, max_age_seconds=settings.price_max_age_seconds)
    app.state.sentinel = ArbitrageSentinel(store, settings.breaker)
    app.state.idempotency = IdempotencyGuard(store, settings.idempotency_ttl_seconds)

    if telemetry.setup_telemetry():
        # Attach OTLP handler to root logger for log export
        handler = telemetry.get_log_handler()
        if handler:
            logging.getLogger().addHandler(handler)
            logging.getLogger().setLevel(logging.INFO)
        telemetry.setup_account_metrics()
        logger.info("Telemetry initialized (OTLP metrics + logs enabled)")
    else:
        logger.info("Telemetry disabled")

    yield

    await store.close()
    logger.info("Application shutting down")


app = FastAPI(
    title="Propdesk Trading Engine",
    description="Simulated prediction-market trading with prop-firm risk rules",
    version=VERSION,
    lifespan=lifespan,
)


# Admin and job routes stay unversioned
app.include_router(admin_router, prefix="/admin", tags=["admin"])
app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
app.include_router(trading_router, prefix="/api/v1", tags=["trading"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/version")
async def get_version():
    """Get API version information."""
    return {
        "version": VERSION,
        "api_version": "v1",
    }
