"""Shared, short-lived state used by the circuit breaker, the price oracle
and the idempotency guard.

Values are strings; callers own their serialization. Entries may carry a
TTL and disappear on their own, which is what lets a frozen market thaw
without anyone clearing it.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable

from redis.asyncio import Redis


class SharedStore(ABC):
    """Key/value store with per-key expiry."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def get_many(self, keys: Iterable[str]) -> dict[str, str | None]:
        """Fetch several keys in one round-trip."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        """Write a value.

        Returns:
            False when only_if_absent is set and the key already exists,
            True otherwise
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        pass


class MemoryStore(SharedStore):
    """In-process store for tests and single-process development."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def get_many(self, keys: Iterable[str]) -> dict[str, str | None]:
        return {key: self._live(key) for key in keys}

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        if only_if_absent and self._live(key) is not None:
            return False
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = (value, expires_at)
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisStore(SharedStore):
    """Store backed by Redis, shared by every worker process."""

    def __init__(self, client: Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def get_many(self, keys: Iterable[str]) -> dict[str, str | None]:
        keys = list(keys)
        if not keys:
            return {}
        values = await self._client.mget(keys)
        return dict(zip(keys, values))

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        px = int(ttl_seconds * 1000) if ttl_seconds is not None else None
        result = await self._client.set(key, value, px=px, nx=only_if_absent)
        return bool(result)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()
