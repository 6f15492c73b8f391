import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cache.coordinator import CacheCoordinator
from cache.memory import MemoryTier
from cache.store import FileStore
from cache.tier import CacheTier


class FakeClock:
    """Controllable time source in epoch milliseconds."""

    def __init__(self, start: float = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return FileStore(str(tmp_path / "data"))


@pytest.fixture
def tier(store, clock):
    return CacheTier(store, clock=clock)


@pytest.fixture
def memory(clock):
    return MemoryTier(ttl_ms=60000, max_entries=10, eviction_interval=300, clock=clock)


@pytest.fixture
def coordinator(tier, memory):
    return CacheCoordinator(tier, memory)
