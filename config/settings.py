"""Runtime configuration for the token-market cache."""
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    MEMORY_CACHE_DURATION,
    MEMORY_CACHE_MAX_ENTRIES,
    MEMORY_EVICTION_FRACTION,
    MEMORY_EVICTION_INTERVAL
)


class CacheBackend(str, Enum):
    """Durable store backends."""
    FILE = "file"
    REDIS = "redis"


class CacheSettings(BaseSettings):
    """Configuration for the cache tiers and the durable store."""

    CACHE_BACKEND: CacheBackend = Field(
        default=CacheBackend.FILE,
        description="Durable store backend (file or redis)"
    )
    CACHE_DATA_DIR: str = Field(
        default="data",
        description="Root directory of the file-backed store"
    )

    # Redis Configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL"
    )
    REDIS_KEY_PREFIX: str = Field(
        default="market_cache",
        description="Prefix of every key written to Redis"
    )

    # Memory tier
    MEMORY_CACHE_ENABLED: bool = Field(
        default=True,
        description="Front the durable store with the in-process memory tier"
    )
    MEMORY_CACHE_TTL_MS: int = Field(
        default=MEMORY_CACHE_DURATION,
        description="Freshness window of memory tier entries in milliseconds"
    )
    MEMORY_CACHE_MAX_ENTRIES: int = Field(
        default=MEMORY_CACHE_MAX_ENTRIES,
        description="Entry count above which the eviction pass trims the memory tier"
    )
    MEMORY_EVICTION_INTERVAL: float = Field(
        default=MEMORY_EVICTION_INTERVAL,
        description="Seconds between memory tier eviction passes"
    )
    MEMORY_EVICTION_FRACTION: float = Field(
        default=MEMORY_EVICTION_FRACTION,
        description="Share of the oldest entries removed by one eviction pass"
    )

    # Circuit breaker around the Redis store
    CIRCUIT_FAILURE_THRESHOLD: int = Field(
        default=5,
        description="Consecutive Redis failures before the circuit opens"
    )
    CIRCUIT_RECOVERY_TIMEOUT: float = Field(
        default=30.0,
        description="Seconds to wait before probing Redis again"
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Log level"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("MEMORY_CACHE_TTL_MS", "MEMORY_CACHE_MAX_ENTRIES", "CIRCUIT_FAILURE_THRESHOLD")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("MEMORY_EVICTION_INTERVAL", "CIRCUIT_RECOVERY_TIMEOUT")
    @classmethod
    def _positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("MEMORY_EVICTION_FRACTION")
    @classmethod
    def _fraction(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("must be within (0, 1]")
        return value


@lru_cache()
def get_settings(env_file: Optional[str] = ".env") -> CacheSettings:
    """Load settings from the environment once per process."""
    return CacheSettings(_env_file=env_file)
