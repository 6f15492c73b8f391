"""
Token-market caching module

Read-through cache in front of the token-market API and the price oracle.
Endpoint handlers ask the coordinator for a record; on a miss they fetch
upstream and write the result back. Records live in a durable store
(JSON files or Redis) wrapped in a TTL envelope, fronted by a bounded
process-local memory tier for hot keys.

Every failure inside the cache degrades to a miss.
"""

from .coordinator import CacheCoordinator, build_coordinator, cache_key, cached, memory_key
from .exceptions import CacheError, MalformedRecord, StorageUnavailable
from .invalidation import CacheInvalidator, invalidates_cache
from .memory import MemoryTier
from .redis_manager import RedisStore
from .store import DurableStore, FileStore
from .tier import CacheTier

__all__ = [
    'CacheCoordinator',
    'build_coordinator',
    'cache_key',
    'cached',
    'memory_key',
    'CacheError',
    'MalformedRecord',
    'StorageUnavailable',
    'CacheInvalidator',
    'invalidates_cache',
    'MemoryTier',
    'RedisStore',
    'DurableStore',
    'FileStore',
    'CacheTier'
]
