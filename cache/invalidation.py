from typing import Callable, Iterable
import functools

import structlog

from .coordinator import CacheCoordinator, memory_key

logger = structlog.get_logger()


class CacheInvalidator:
    """Invalidates groups of records through a coordinator."""

    def __init__(self, coordinator: CacheCoordinator):
        self.cache = coordinator

    async def invalidate_keys(self, collection: str, keys: Iterable[str]) -> int:
        """Invalidate several keys of one collection; returns how many succeeded."""
        invalidated = 0
        for key in keys:
            if await self.cache.invalidate(collection, key):
                invalidated += 1
        logger.info("cache_invalidated", collection=collection, count=invalidated)
        return invalidated

    async def invalidate_collection(self, collection: str) -> int:
        """
        Invalidate every record of a collection.

        Enumerates the durable store, so this is a maintenance operation and
        not meant for the request path.
        """
        keys = await self.cache.durable.keys(collection)
        invalidated = await self.invalidate_keys(collection, keys)
        if self.cache.memory is not None:
            # memory entries may outlive their durable records
            self.cache.memory.delete_prefix(memory_key(collection, ""))
        return invalidated


def invalidates_cache(collection: str, key_builder: Callable[..., str]):
    """
    Decorator to invalidate a record after a mutating method completes.

    The instance must expose the coordinator as ``self.cache``.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            result = await func(self, *args, **kwargs)

            coordinator = getattr(self, 'cache', None)
            if coordinator is None:
                return result

            await coordinator.invalidate(collection, key_builder(*args, **kwargs))
            return result
        return wrapper
    return decorator
