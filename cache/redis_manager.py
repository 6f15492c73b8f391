"""Redis-backed durable store shared by every server process."""
from typing import Any, Dict, List, Optional
import json

import redis.asyncio as redis
import structlog

from error_handling.circuit_breaker import CircuitBreaker
from monitoring.cache_metrics import record_error
from .store import DurableStore, encode_name

logger = structlog.get_logger()

GLOB_SPECIAL = "\\*?[]"
SCAN_BATCH = 100


def escape_pattern(value: str) -> str:
    """Escape Redis glob metacharacters."""
    return "".join("\\" + c if c in GLOB_SPECIAL else c for c in value)


class RedisStore(DurableStore):
    def __init__(self, redis_url: str, prefix: str = "market_cache",
                 breaker: Optional[CircuitBreaker] = None,
                 client: Optional[redis.Redis] = None):
        """Initialize the store with a connection URL and a key prefix."""
        self.redis_url = redis_url
        self.prefix = prefix
        self.breaker = breaker or CircuitBreaker(name="redis")
        self.redis: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await self.redis.ping()
            logger.info("redis_connection_established")
        except Exception as e:
            self.redis = None
            logger.error("redis_connection_failed", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("redis_connection_closed")

    async def close(self) -> None:
        await self.disconnect()

    def collection_prefix(self, collection: str) -> str:
        return f"{self.prefix}:{encode_name(collection)}:"

    def record_key(self, collection: str, key: str) -> str:
        return self.collection_prefix(collection) + key

    async def _client(self) -> redis.Redis:
        if not self.redis:
            await self.connect()
        return self.redis

    async def _guarded(self, operation: str, command, *args, **kwargs):
        """
        Run a command through the circuit breaker.

        Returns a ``(ok, result)`` pair; failures are logged and counted.
        """
        async def run():
            client = await self._client()
            return await getattr(client, command)(*args, **kwargs)

        try:
            return True, await self.breaker.call_async(run)
        except CircuitBreaker.CircuitBreakerError:
            logger.debug("redis_circuit_open", operation=operation)
            return False, None
        except Exception as e:
            logger.error(f"redis_{operation}_failed", error=str(e))
            record_error(operation)
            return False, None

    def _decode(self, redis_key: str, raw: Optional[str]) -> Optional[Any]:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (ValueError, RecursionError) as e:
            logger.error("redis_record_malformed", key=redis_key, error=str(e))
            record_error("read")
            return None

    async def read(self, collection: str, key: str) -> Optional[Any]:
        redis_key = self.record_key(collection, key)
        ok, raw = await self._guarded("get", "get", redis_key)
        if not ok:
            return None
        return self._decode(redis_key, raw)

    async def write(self, collection: str, key: str, value: Any) -> bool:
        redis_key = self.record_key(collection, key)
        try:
            serialized_value = json.dumps(value)
        except (TypeError, ValueError, RecursionError) as e:
            logger.error("redis_serialize_failed", key=redis_key, error=str(e))
            record_error("write")
            return False
        ok, _ = await self._guarded("set", "set", redis_key, serialized_value)
        return ok

    async def delete(self, collection: str, key: str) -> bool:
        ok, _ = await self._guarded("delete", "delete", self.record_key(collection, key))
        return ok

    async def _scan_keys(self, pattern: str) -> Optional[List[str]]:
        keys: List[str] = []
        cursor = 0
        while True:
            ok, result = await self._guarded("scan", "scan", cursor=cursor,
                                             match=pattern, count=SCAN_BATCH)
            if not ok:
                return None
            cursor, batch = result
            keys.extend(batch)
            if cursor == 0:
                break
        return keys

    async def list_all(self, collection: str) -> Dict[str, Any]:
        """Enumerate a collection with SCAN; used by maintenance only."""
        prefix = self.collection_prefix(collection)
        redis_keys = await self._scan_keys(escape_pattern(prefix) + "*")
        if not redis_keys:
            return {}

        records: Dict[str, Any] = {}
        for start in range(0, len(redis_keys), SCAN_BATCH):
            chunk = redis_keys[start:start + SCAN_BATCH]
            ok, values = await self._guarded("mget", "mget", chunk)
            if not ok:
                return records
            for redis_key, raw in zip(chunk, values):
                value = self._decode(redis_key, raw)
                if value is not None:
                    records[redis_key[len(prefix):]] = value
        return records
