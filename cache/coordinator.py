"""
Cache coordinator: the façade endpoint handlers call.

Reads go memory tier -> durable tier -> miss. A durable hit backfills the
memory tier. Writes go to the durable tier first and are mirrored to the
memory tier only when the durable write succeeded.

Concurrent misses for the same key are not coalesced: each caller fetches
upstream and writes, and the last completed write wins.
"""
import functools
import hashlib
from typing import Any, Callable, Dict, Optional

import structlog

from config.constants import MAX_KEY_LENGTH, MEMORY_KEY_SEPARATOR
from config.settings import CacheBackend, CacheSettings, get_settings
from error_handling.circuit_breaker import CircuitBreaker
from monitoring.cache_metrics import track_cache_operation
from . import envelope
from .envelope import Clock
from .memory import MemoryTier
from .redis_manager import RedisStore
from .store import DurableStore, FileStore
from .tier import CacheTier

logger = structlog.get_logger()


def memory_key(collection: str, key: str) -> str:
    """
    Flat memory tier key for a (collection, key) pair.

    Collection names must not contain the separator, otherwise
    ``("a:b", "c")`` and ``("a", "b:c")`` would share one entry.

    Raises:
        ValueError: If the collection name contains the separator
    """
    if MEMORY_KEY_SEPARATOR in collection:
        raise ValueError(
            f"Collection name {collection!r} must not contain {MEMORY_KEY_SEPARATOR!r}"
        )
    return f"{collection}{MEMORY_KEY_SEPARATOR}{key}"


class CacheCoordinator:
    """Two-tier read-through cache with write-through puts."""

    def __init__(self, durable: CacheTier, memory: Optional[MemoryTier] = None):
        """
        Args:
            durable: Durable tier, the system of record
            memory: Optional process-local tier for hot keys
        """
        self.durable = durable
        self.memory = memory

    @track_cache_operation('get')
    async def get(self, collection: str, key: str, ttl_ms: int,
                  use_memory: bool = True) -> Optional[Any]:
        """
        Get a cached payload.

        Args:
            collection: Namespace of the record
            key: Record key within the collection
            ttl_ms: Freshness window applied to the durable record
            use_memory: False to bypass the memory tier

        Returns:
            The payload, or None on a miss. The caller fetches upstream and
            calls ``put`` on a miss.
        """
        mkey = memory_key(collection, key)
        if use_memory and self.memory is not None:
            payload = self.memory.get(mkey)
            if payload is not None:
                logger.debug("cache_hit", tier="memory", key=mkey)
                return payload

        payload = await self.durable.get(collection, key, ttl_ms)
        if payload is not None and self.memory is not None:
            self.memory.set(mkey, payload)
        return payload

    @track_cache_operation('put')
    async def put(self, collection: str, key: str, payload: Any, ttl_ms: int) -> bool:
        """Write through both tiers; the memory tier only on durable success."""
        mkey = memory_key(collection, key)
        ok = await self.durable.put(collection, key, payload, ttl_ms)
        if ok and self.memory is not None:
            self.memory.set(mkey, payload)
        return ok

    @track_cache_operation('invalidate')
    async def invalidate(self, collection: str, key: str) -> bool:
        """Delete from both tiers and return the durable result."""
        mkey = memory_key(collection, key)
        if self.memory is not None:
            self.memory.delete(mkey)
        return await self.durable.invalidate(collection, key)

    cache_get = get
    cache_put = put
    cache_invalidate = invalidate

    def start(self) -> None:
        """Start background maintenance of the memory tier."""
        if self.memory is not None:
            self.memory.start()

    async def stop(self) -> None:
        if self.memory is not None:
            await self.memory.stop()
        await self.durable.store.close()

    async def __aenter__(self) -> "CacheCoordinator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def get_stats(self) -> Dict[str, Any]:
        return {
            'memory': self.memory.get_stats() if self.memory is not None else None,
            'durable_backend': type(self.durable.store).__name__
        }


def cache_key(prefix: str, *args: Any, **kwargs: Any) -> str:
    """
    Build a composite key from route parameters.

    ``cache_key("holders", "tok1", page=2, limit=50)`` gives
    ``holders:tok1:limit=50:page=2``. Keys longer than ``MAX_KEY_LENGTH``
    are replaced by a hash under the same prefix.
    """
    key_parts = [str(prefix)]
    key_parts.extend(str(arg) for arg in args)
    for k, v in sorted(kwargs.items()):
        key_parts.append(f"{k}={v}")

    key = ":".join(key_parts)
    if len(key) > MAX_KEY_LENGTH:
        key = f"{prefix}:hash:{hashlib.sha256(key.encode()).hexdigest()}"
    return key


def cached(collection: str, ttl_ms: int, key_builder: Optional[Callable[..., str]] = None):
    """
    Decorator for read-through caching of an upstream fetch method.

    The instance must expose the coordinator as ``self.cache``; without it
    the method is called directly. ``None`` results are not cached and
    exceptions from the fetch propagate unchanged.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            coordinator = getattr(self, 'cache', None)
            if coordinator is None:
                return await func(self, *args, **kwargs)

            if key_builder:
                key = key_builder(*args, **kwargs)
            else:
                key = cache_key(func.__name__, *args, **kwargs)

            cached_value = await coordinator.get(collection, key, ttl_ms)
            if cached_value is not None:
                return cached_value

            result = await func(self, *args, **kwargs)
            if result is not None:
                await coordinator.put(collection, key, result, ttl_ms)
            return result
        return wrapper
    return decorator


def build_store(settings: CacheSettings) -> DurableStore:
    """Create the durable store selected by the settings."""
    if settings.CACHE_BACKEND == CacheBackend.REDIS:
        breaker = CircuitBreaker(
            name="redis",
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_RECOVERY_TIMEOUT
        )
        return RedisStore(settings.REDIS_URL, prefix=settings.REDIS_KEY_PREFIX, breaker=breaker)
    return FileStore(settings.CACHE_DATA_DIR)


def build_coordinator(settings: Optional[CacheSettings] = None,
                      store: Optional[DurableStore] = None,
                      clock: Clock = envelope.now_ms) -> CacheCoordinator:
    """Wire a coordinator from settings."""
    settings = settings or get_settings()
    store = store or build_store(settings)

    memory = None
    if settings.MEMORY_CACHE_ENABLED:
        memory = MemoryTier(
            ttl_ms=settings.MEMORY_CACHE_TTL_MS,
            max_entries=settings.MEMORY_CACHE_MAX_ENTRIES,
            eviction_interval=settings.MEMORY_EVICTION_INTERVAL,
            eviction_fraction=settings.MEMORY_EVICTION_FRACTION,
            clock=clock
        )

    logger.info("cache_coordinator_built", backend=type(store).__name__,
                memory_enabled=memory is not None)
    return CacheCoordinator(CacheTier(store, clock=clock), memory)
