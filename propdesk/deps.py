"""FastAPI dependencies for the shared services built at startup.

The store, oracle, circuit breaker and idempotency guard live on
app.state; tests override these functions instead.
"""

from fastapi import Request

from propdesk.oracle import PriceOracle
from propdesk.services.circuit_breaker import ArbitrageSentinel
from propdesk.services.idempotency import IdempotencyGuard
from propdesk.state import SharedStore


def get_store(request: Request) -> SharedStore:
    return request.app.state.store


def get_oracle(request: Request) -> PriceOracle:
    return request.app.state.oracle


def get_sentinel(request: Request) -> ArbitrageSentinel:
    return request.app.state.sentinel


def get_idempotency_guard(request: Request) -> IdempotencyGuard:
    return request.app.state.idempotency
