"""
Process-local memory tier.

A flat, bounded map fronting the durable tier for hot keys. Entries carry
their own timestamp and are fresh for a fixed window independent of the
duration the durable record was written with. Stale entries are not removed
on read; only the periodic capacity eviction or an overwrite removes them.
"""
import asyncio
from typing import Any, Dict, List, Optional

import structlog

from monitoring.cache_metrics import MEMORY_TIER, record_evictions, record_hit, record_miss
from . import envelope
from config.constants import (
    MEMORY_CACHE_DURATION,
    MEMORY_CACHE_MAX_ENTRIES,
    MEMORY_EVICTION_FRACTION,
    MEMORY_EVICTION_INTERVAL
)
from .envelope import Clock

logger = structlog.get_logger()


class MemoryTier:
    """
    In-memory snapshot cache owned by one process.

    Keys are flat; callers qualify them (the coordinator uses
    ``collection:key``) to avoid collisions between collections.
    """

    def __init__(self, ttl_ms: int = MEMORY_CACHE_DURATION,
                 max_entries: int = MEMORY_CACHE_MAX_ENTRIES,
                 eviction_interval: float = MEMORY_EVICTION_INTERVAL,
                 eviction_fraction: float = MEMORY_EVICTION_FRACTION,
                 clock: Clock = envelope.now_ms):
        """
        Initialize the tier.

        Args:
            ttl_ms: Freshness window of an entry in milliseconds
            max_entries: Entry count above which eviction trims the tier
            eviction_interval: Seconds between eviction passes
            eviction_fraction: Share of the oldest entries removed per pass
            clock: Time source in epoch milliseconds
        """
        self._entries: Dict[str, Dict[str, Any]] = {}
        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self.eviction_interval = eviction_interval
        self.eviction_fraction = eviction_fraction
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[Any]:
        """
        Get a payload from the tier.

        Returns:
            The payload, or None if absent or older than the tier's TTL
        """
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry['timestamp'] >= self.ttl_ms:
            self._misses += 1
            record_miss(MEMORY_TIER)
            return None

        self._hits += 1
        record_hit(MEMORY_TIER)
        return entry['payload']

    def set(self, key: str, payload: Any) -> None:
        self._entries[key] = {
            'payload': payload,
            'timestamp': self._clock()
        }

    def delete(self, key: str) -> bool:
        """Remove an entry; returns False if it was not present."""
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def evict(self) -> List[str]:
        """
        Trim the tier when it holds more than ``max_entries`` entries.

        Removes the oldest ``eviction_fraction`` of the entries by timestamp,
        whether or not they are still fresh.

        Returns:
            Keys that were removed, oldest first
        """
        size = len(self._entries)
        if size <= self.max_entries:
            return []

        count = max(1, int(size * self.eviction_fraction))
        by_age = sorted(self._entries.items(), key=lambda item: item[1]['timestamp'])
        evicted = [key for key, _ in by_age[:count]]
        for key in evicted:
            del self._entries[key]

        self._evictions += len(evicted)
        record_evictions(len(evicted), len(self._entries))
        logger.info("memory_cache_evicted", evicted=len(evicted), size=len(self._entries),
                    max_entries=self.max_entries)
        return evicted

    def start(self) -> None:
        """Start the periodic eviction task on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._eviction_loop())
        logger.info("memory_cache_eviction_started", interval=self.eviction_interval)

    async def stop(self) -> None:
        """Stop the periodic eviction task."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("memory_cache_eviction_stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _eviction_loop(self) -> None:
        while True:
            await asyncio.sleep(self.eviction_interval)
            try:
                self.evict()
            except Exception as e:
                logger.error("memory_cache_eviction_error", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self._hits + self._misses
        hit_ratio = self._hits / total_requests if total_requests > 0 else 0

        return {
            'size': len(self._entries),
            'max_size': self.max_entries,
            'ttl_ms': self.ttl_ms,
            'hits': self._hits,
            'misses': self._misses,
            'hit_ratio': hit_ratio,
            'evictions': self._evictions
        }
