"""Idempotency guard for trade requests.

A client that times out and retries the same order must not buy twice.
The first request claims its key with SET NX; repeats either get the
stored response back or, while the first is still running, a conflict.
"""

import json
import logging

from propdesk.errors import DuplicateRequestError
from propdesk.state import SharedStore

logger = logging.getLogger(__name__)

KEY = "trade:idem:{}:{}"
PENDING = json.dumps({"status": "pending"})


class IdempotencyGuard:
    def __init__(self, store: SharedStore, ttl_seconds: int = 60):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def claim(self, scope: str, key: str) -> dict | None:
        """Claim a key for a new request.

        Returns:
            None if this request owns the key, or the cached response of a
            completed earlier request with the same key

        Raises:
            DuplicateRequestError: If the earlier request is still running
        """
        redis_key = KEY.format(scope, key)
        claimed = await self.store.set(
            redis_key, PENDING, ttl_seconds=self.ttl_seconds, only_if_absent=True
        )
        if claimed:
            return None

        cached = await self.store.get(redis_key)
        if cached is None:
            # Expired between the two calls; claim again
            return await self.claim(scope, key)
        data = json.loads(cached)
        if data == {"status": "pending"}:
            raise DuplicateRequestError("A request with this idempotency key is in progress")
        logger.info("Returning cached response", extra={"idempotency_key": key[:8]})
        return data

    async def complete(self, scope: str, key: str, response: dict) -> None:
        await self.store.set(
            KEY.format(scope, key), json.dumps(response), ttl_seconds=self.ttl_seconds
        )

    async def release(self, scope: str, key: str) -> None:
        """Drop a claim after a failed request so the client can retry."""
        await self.store.delete(KEY.format(scope, key))
