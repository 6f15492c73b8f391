"""
Durable cache tier.

Applies the TTL envelope on top of a ``DurableStore``. Expiration is lazy:
a read that finds a stale record deletes it. There is no background sweep;
``purge_expired`` exists for maintenance jobs only.
"""
from typing import Any, List, Optional

import structlog

from monitoring.cache_metrics import DURABLE_TIER, record_expired, record_hit, record_miss
from . import envelope
from .envelope import Clock
from .store import DurableStore

logger = structlog.get_logger()


class CacheTier:
    """Read, write and delete enveloped records in a durable store."""

    def __init__(self, store: DurableStore, clock: Clock = envelope.now_ms):
        """
        Args:
            store: Backend holding the records
            clock: Time source in epoch milliseconds
        """
        self.store = store
        self._clock = clock

    async def put(self, collection: str, key: str, payload: Any, ttl_ms: int) -> bool:
        """
        Store a payload with its duration.

        Returns:
            True if the record was written, False on any storage failure
        """
        record = envelope.wrap(payload, ttl_ms, now=self._clock())
        ok = await self.store.write(collection, key, record)
        if ok:
            logger.debug("cache_set", tier=DURABLE_TIER, collection=collection, key=key, ttl_ms=ttl_ms)
        return ok

    async def get(self, collection: str, key: str, ttl_ms: int) -> Optional[Any]:
        """
        Return the payload if the record is fresh under ``ttl_ms``.

        The read-time duration governs freshness, not the one the record was
        written with. Stale or malformed records are deleted.
        """
        record = await self.store.read(collection, key)
        if record is None:
            record_miss(DURABLE_TIER)
            logger.debug("cache_miss", tier=DURABLE_TIER, collection=collection, key=key)
            return None

        if envelope.is_expired(record, ttl_ms, now=self._clock()):
            await self.store.delete(collection, key)
            record_expired(collection)
            record_miss(DURABLE_TIER)
            logger.debug("cache_expired", tier=DURABLE_TIER, collection=collection, key=key)
            return None

        record_hit(DURABLE_TIER)
        logger.debug("cache_hit", tier=DURABLE_TIER, collection=collection, key=key)
        return envelope.unwrap(record)

    async def invalidate(self, collection: str, key: str) -> bool:
        """Delete a record regardless of its freshness."""
        ok = await self.store.delete(collection, key)
        if ok:
            logger.debug("cache_invalidated", tier=DURABLE_TIER, collection=collection, key=key)
        return ok

    async def keys(self, collection: str) -> List[str]:
        """List the keys currently stored in a collection, fresh or not."""
        records = await self.store.list_all(collection)
        return sorted(records)

    async def purge_expired(self, collection: str, ttl_ms: Optional[int] = None) -> int:
        """
        Delete every expired record of a collection.

        Args:
            collection: Collection to compact
            ttl_ms: Duration to judge by, defaults to each record's own

        Returns:
            Number of records deleted
        """
        records = await self.store.list_all(collection)
        now = self._clock()
        purged = 0
        for key, record in records.items():
            if envelope.is_expired(record, ttl_ms, now=now):
                if await self.store.delete(collection, key):
                    purged += 1
        logger.info("cache_purged", collection=collection, scanned=len(records), purged=purged)
        return purged
