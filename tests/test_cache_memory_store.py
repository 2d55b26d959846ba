import asyncio

import pytest

from thinkloop.domain.context.memory.cache_memory_store import CacheMemoryStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheMemoryStore(default_ttl=60.0, check_period=0.01, clock=clock)


def test_get_returns_same_reference_within_ttl(cache, clock):
    value = {"memories": ["a"]}
    cache.set("conversation_memories:1", value)

    clock.advance(59)

    assert cache.get("conversation_memories:1") is value


def test_get_after_expiry_is_a_miss_and_drops_entry(cache, clock):
    cache.set("memory:1", "cached")

    clock.advance(60)

    assert cache.get("memory:1") is None
    assert "memory:1" not in cache.cache


def test_explicit_ttl_overrides_default(cache, clock):
    cache.set("short", 1, ttl=5)
    cache.set("long", 2)

    clock.advance(10)

    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_delete_prefix_only_removes_matching_keys(cache):
    cache.set("search:roadmap:", [1])
    cache.set("search:groceries:category=resources", [2])
    cache.set("memory:1", "kept")

    removed = cache.delete_prefix("search:")

    assert removed == 2
    assert cache.get("memory:1") == "kept"
    assert cache.get("search:roadmap:") is None


def test_delete_and_flush(cache):
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a") is True
    assert cache.delete("a") is False

    cache.flush()
    assert cache.cache == {}


def test_clear_expired_and_stats(cache, clock):
    cache.set("old", 1, ttl=1)
    cache.set("fresh", 2)
    cache.get("fresh")
    cache.get("missing")

    clock.advance(2)
    stats = cache.get_stats()

    assert stats == {"total_keys": 2, "active_keys": 1, "expired_keys": 1, "hits": 1, "misses": 1}
    assert cache.clear_expired() == 1
    assert list(cache.cache) == ["fresh"]


@pytest.mark.asyncio
async def test_sweeper_removes_expired_entries(cache, clock):
    cache.set("old", 1, ttl=1)
    clock.advance(5)

    cache.start_sweeper()
    await asyncio.sleep(0.05)
    await cache.stop_sweeper()

    assert cache.cache == {}
    assert cache._sweeper is None
