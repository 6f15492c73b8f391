from prometheus_client import Counter, Histogram, Gauge
import structlog
import time
from functools import wraps
from typing import Optional, Callable

logger = structlog.get_logger()

# Cache tiers for metric labels
MEMORY_TIER = 'memory'
DURABLE_TIER = 'durable'

# Cache operation metrics
CACHE_HITS = Counter(
    'market_cache_hits_total',
    'Total number of cache hits',
    ['tier']
)
CACHE_MISSES = Counter(
    'market_cache_misses_total',
    'Total number of cache misses',
    ['tier']
)
CACHE_EXPIRED = Counter(
    'market_cache_expired_total',
    'Total number of stale durable records removed on read',
    ['collection']
)
CACHE_ERRORS = Counter(
    'market_cache_errors_total',
    'Total number of storage errors converted to misses',
    ['operation']
)
CACHE_EVICTIONS = Counter(
    'market_cache_memory_evictions_total',
    'Total number of memory tier entries removed by capacity eviction'
)
CACHE_OPERATION_DURATION = Histogram(
    'market_cache_operation_duration_seconds',
    'Duration of cache operations',
    ['operation']
)
MEMORY_ITEMS = Gauge(
    'market_cache_memory_items',
    'Current number of entries in the memory tier'
)


def record_hit(tier: str) -> None:
    CACHE_HITS.labels(tier=tier).inc()


def record_miss(tier: str) -> None:
    CACHE_MISSES.labels(tier=tier).inc()


def record_error(operation: str) -> None:
    CACHE_ERRORS.labels(operation=operation).inc()


def record_expired(collection: str) -> None:
    CACHE_EXPIRED.labels(collection=collection).inc()


def record_evictions(count: int, size: int) -> None:
    if count:
        CACHE_EVICTIONS.inc(count)
    MEMORY_ITEMS.set(size)


def track_cache_operation(operation: str, tier: Optional[str] = None):
    """Decorator to track latency and hit/miss of an async cache operation."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                CACHE_ERRORS.labels(operation=operation).inc()
                logger.error(
                    "cache_operation_failed",
                    operation=operation,
                    error=str(e)
                )
                raise
            duration = time.time() - start_time
            CACHE_OPERATION_DURATION.labels(operation=operation).observe(duration)

            if tier:
                if result is not None:
                    record_hit(tier)
                else:
                    record_miss(tier)

            return result
        return wrapper
    return decorator
