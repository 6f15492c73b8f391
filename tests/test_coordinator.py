import asyncio
from unittest.mock import AsyncMock

import pytest

from cache.coordinator import CacheCoordinator, build_coordinator, cache_key, cached, memory_key
from cache.memory import MemoryTier
from cache.redis_manager import RedisStore
from cache.store import DurableStore, FileStore
from cache.tier import CacheTier
from config.settings import CacheSettings


def test_freshness(coordinator):
    async def scenario():
        assert await coordinator.put("holders", "tok1", {"data": [1]}, 30000) is True
        return await coordinator.get("holders", "tok1", 30000)

    assert asyncio.run(scenario()) == {"data": [1]}


def test_expiration_with_real_clock(tmp_path):
    """Test that an expired record stays gone on later reads."""
    coordinator = CacheCoordinator(CacheTier(FileStore(str(tmp_path))), MemoryTier())

    async def scenario():
        await coordinator.put("trades", "tok1", ["t1"], 50)
        await asyncio.sleep(0.06)
        first = await coordinator.get("trades", "tok1", 50, use_memory=False)
        second = await coordinator.get("trades", "tok1", 50, use_memory=False)
        return first, second

    assert asyncio.run(scenario()) == (None, None)


def test_read_duration_governs_durable_freshness(coordinator, clock):
    async def scenario():
        await coordinator.put("prices", "tok1", 42, 100000)
        clock.advance(20)
        return await coordinator.get("prices", "tok1", 10, use_memory=False)

    assert asyncio.run(scenario()) is None


def test_overwrite(coordinator):
    async def scenario():
        await coordinator.put("users", "u1", "v1", 30000)
        await coordinator.put("users", "u1", "v2", 30000)
        return (
            await coordinator.get("users", "u1", 30000),
            await coordinator.get("users", "u1", 30000, use_memory=False),
        )

    assert asyncio.run(scenario()) == ("v2", "v2")


def test_invalidate_is_idempotent(coordinator):
    async def scenario():
        assert await coordinator.invalidate("holders", "missing") is True
        assert await coordinator.invalidate("holders", "missing") is True

    asyncio.run(scenario())


def test_invalidate_clears_both_tiers(coordinator, memory):
    async def scenario():
        await coordinator.put("holders", "tok1", "v", 30000)
        assert memory_key("holders", "tok1") in memory

        assert await coordinator.invalidate("holders", "tok1") is True
        assert memory_key("holders", "tok1") not in memory
        return await coordinator.get("holders", "tok1", 30000)

    assert asyncio.run(scenario()) is None


def test_tiers_agree_after_put(coordinator, memory):
    """Test that memory-first and durable-only reads return the same payload."""
    async def scenario():
        await coordinator.put("tokens", "tok1", {"name": "PEPE"}, 30000)
        return (
            await coordinator.get("tokens", "tok1", 30000),
            await coordinator.get("tokens", "tok1", 30000, use_memory=False),
        )

    via_memory, via_durable = asyncio.run(scenario())
    assert via_memory == via_durable == {"name": "PEPE"}
    assert memory.get_stats()["hits"] == 1


def test_corrupt_storage_is_a_miss(coordinator, store):
    async def scenario():
        await coordinator.put("holders", "tok1", "v", 30000)
        with open(store._record_path("holders", "tok1"), "w", encoding="utf-8") as f:
            f.write("not json at all")
        return await coordinator.get("holders", "tok1", 30000, use_memory=False)

    assert asyncio.run(scenario()) is None


def test_undecodable_bytes_are_a_miss(coordinator, store):
    async def scenario():
        await coordinator.put("holders", "tok1", "v", 30000)
        with open(store._record_path("holders", "tok1"), "wb") as f:
            f.write(b"\xff\xfe{garbage")
        return await coordinator.get("holders", "tok1", 30000, use_memory=False)

    assert asyncio.run(scenario()) is None


def test_long_key_round_trip(coordinator, store):
    key = "é" * 60

    async def scenario():
        assert await coordinator.put("holders", key, "v", 30000) is True
        return await coordinator.get("holders", key, 30000, use_memory=False)

    assert asyncio.run(scenario()) == "v"
    assert list(asyncio.run(store.list_all("holders"))) == [key]


def test_collection_with_separator_is_rejected(coordinator, store, memory):
    with pytest.raises(ValueError):
        asyncio.run(coordinator.put("a:b", "c", "v", 30000))
    with pytest.raises(ValueError):
        asyncio.run(coordinator.get("a:b", "c", 30000))
    assert asyncio.run(store.list_all("a:b")) == {}
    assert len(memory) == 0

    # keys may contain the separator
    assert asyncio.run(coordinator.put("a", "b:c", "v", 30000)) is True
    assert asyncio.run(coordinator.get("a", "b:c", 30000)) == "v"


def test_durable_hit_backfills_memory(coordinator, tier, memory):
    async def scenario():
        await tier.put("holders", "tok1", "v", 30000)
        assert memory_key("holders", "tok1") not in memory

        assert await coordinator.get("holders", "tok1", 30000) == "v"
        assert memory.get(memory_key("holders", "tok1")) == "v"

    asyncio.run(scenario())


def test_memory_hit_skips_durable_tier(clock):
    backend = AsyncMock(spec=DurableStore)
    backend.write.return_value = True
    coordinator = CacheCoordinator(CacheTier(backend, clock=clock), MemoryTier(clock=clock))

    async def scenario():
        await coordinator.put("prices", "tok1", 1.5, 30000)
        return await coordinator.get("prices", "tok1", 30000)

    assert asyncio.run(scenario()) == 1.5
    backend.read.assert_not_called()


def test_memory_may_serve_past_durable_duration(coordinator, clock):
    """Test that the memory tier keeps its own freshness window."""
    async def scenario():
        await coordinator.put("holders", "tok1", "v", 100)
        clock.advance(1000)
        return (
            await coordinator.get("holders", "tok1", 100),
            await coordinator.get("holders", "tok1", 100, use_memory=False),
        )

    assert asyncio.run(scenario()) == ("v", None)


def test_failed_durable_write_skips_memory(clock):
    backend = AsyncMock(spec=DurableStore)
    backend.write.return_value = False
    memory = MemoryTier(clock=clock)
    coordinator = CacheCoordinator(CacheTier(backend, clock=clock), memory)

    assert asyncio.run(coordinator.put("holders", "tok1", "v", 30000)) is False
    assert len(memory) == 0


def test_failed_durable_read_is_a_miss(clock):
    backend = AsyncMock(spec=DurableStore)
    backend.read.return_value = None
    coordinator = CacheCoordinator(CacheTier(backend, clock=clock))

    assert asyncio.run(coordinator.get("holders", "tok1", 30000)) is None


def test_without_memory_tier(tier):
    coordinator = CacheCoordinator(tier)

    async def scenario():
        await coordinator.put("holders", "tok1", "v", 30000)
        return await coordinator.get("holders", "tok1", 30000)

    assert asyncio.run(scenario()) == "v"
    assert coordinator.get_stats()["memory"] is None


def test_cache_prefixed_aliases(coordinator):
    async def scenario():
        assert await coordinator.cache_put("holders", "tok1", "v", 30000)
        assert await coordinator.cache_get("holders", "tok1", 30000) == "v"
        assert await coordinator.cache_invalidate("holders", "tok1")
        return await coordinator.cache_get("holders", "tok1", 30000)

    assert asyncio.run(scenario()) is None


def test_context_manager_runs_eviction_task(coordinator, memory):
    async def scenario():
        async with coordinator:
            assert memory.running
        return memory.running

    assert asyncio.run(scenario()) is False


class TokenService:
    """Stand-in for endpoint glue that fetches upstream through the cache."""

    def __init__(self, cache):
        self.cache = cache
        self.fetches = 0

    @cached("holders", 30000, key_builder=lambda token_id, page=1: cache_key(token_id, page=page))
    async def get_holders(self, token_id, page=1):
        self.fetches += 1
        await asyncio.sleep(0)
        return {"token": token_id, "page": page}

    @cached("prices", 30000)
    async def get_price(self, token_id):
        self.fetches += 1
        return None


def test_cached_decorator_reads_through(coordinator):
    service = TokenService(coordinator)

    async def scenario():
        first = await service.get_holders("tok1", page=2)
        second = await service.get_holders("tok1", page=2)
        durable = await coordinator.get("holders", "tok1:page=2", 30000, use_memory=False)
        return first, second, durable

    first, second, durable = asyncio.run(scenario())
    assert first == second == durable == {"token": "tok1", "page": 2}
    assert service.fetches == 1


def test_cached_decorator_skips_none(coordinator):
    service = TokenService(coordinator)

    async def scenario():
        await service.get_price("tok1")
        await service.get_price("tok1")

    asyncio.run(scenario())
    assert service.fetches == 2


def test_cached_decorator_without_cache():
    service = TokenService(None)

    assert asyncio.run(service.get_holders("tok1")) == {"token": "tok1", "page": 1}
    assert service.fetches == 1


def test_concurrent_misses_are_not_coalesced(coordinator):
    """Test that two concurrent misses both fetch upstream and both write."""
    service = TokenService(coordinator)

    async def scenario():
        return await asyncio.gather(
            service.get_holders("tok1"),
            service.get_holders("tok1"),
        )

    results = asyncio.run(scenario())
    assert results[0] == results[1] == {"token": "tok1", "page": 1}
    assert service.fetches == 2


def test_cache_key():
    assert cache_key("holders", "tok1", page=2, limit=50) == "holders:tok1:limit=50:page=2"
    assert cache_key("prices") == "prices"
    assert cache_key("trades", "a") != cache_key("trades", "b")

    long_key = cache_key("trades", "x" * 200)
    assert long_key.startswith("trades:hash:")
    assert long_key == cache_key("trades", "x" * 200)


def test_build_coordinator_file_backend(tmp_path):
    settings = CacheSettings(_env_file=None, CACHE_DATA_DIR=str(tmp_path),
                             MEMORY_CACHE_TTL_MS=5000, MEMORY_CACHE_MAX_ENTRIES=50)
    coordinator = build_coordinator(settings)

    assert isinstance(coordinator.durable.store, FileStore)
    assert coordinator.memory.ttl_ms == 5000
    assert coordinator.memory.max_entries == 50


def test_build_coordinator_redis_backend():
    settings = CacheSettings(_env_file=None, CACHE_BACKEND="redis",
                             REDIS_URL="redis://cache:6379/1", MEMORY_CACHE_ENABLED=False,
                             CIRCUIT_FAILURE_THRESHOLD=3)
    coordinator = build_coordinator(settings)

    assert isinstance(coordinator.durable.store, RedisStore)
    assert coordinator.durable.store.redis_url == "redis://cache:6379/1"
    assert coordinator.durable.store.breaker.failure_threshold == 3
    assert coordinator.memory is None


@pytest.mark.parametrize("use_memory", [True, False])
def test_miss_returns_none(coordinator, use_memory):
    assert asyncio.run(coordinator.get("holders", "nothing", 30000, use_memory=use_memory)) is None
