"""Tests for the in-process shared store."""

import pytest

from propdesk.state import MemoryStore


@pytest.mark.asyncio
async def test_set_and_get(store):
    await store.set("k", "v")
    assert await store.get("k") == "v"
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_entry_expires_after_ttl(store, clock):
    await store.set("k", "v", ttl_seconds=30)

    clock.advance(29.9)
    assert await store.get("k") == "v"

    clock.advance(0.1)
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_only_if_absent(store, clock):
    assert await store.set("k", "first", ttl_seconds=10, only_if_absent=True) is True
    assert await store.set("k", "second", only_if_absent=True) is False
    assert await store.get("k") == "first"

    # An expired key counts as absent
    clock.advance(10)
    assert await store.set("k", "third", only_if_absent=True) is True
    assert await store.get("k") == "third"


@pytest.mark.asyncio
async def test_get_many_and_delete(store):
    await store.set("a", "1")
    await store.set("b", "2")

    assert await store.get_many(["a", "b", "c"]) == {"a": "1", "b": "2", "c": None}

    await store.delete("a")
    await store.delete("never-set")
    assert await store.get("a") is None


@pytest.mark.asyncio
async def test_default_clock_is_wall_time():
    store = MemoryStore()
    await store.set("k", "v", ttl_seconds=60)
    assert await store.get("k") == "v"
