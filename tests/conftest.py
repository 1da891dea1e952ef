"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Dict, List, Optional

import pytest

from search_intel.analytics import SearchAnalytics
from search_intel.cache import SuggestionCache
from search_intel.concurrency import CancellationToken
from search_intel.metrics import SuggestionMetrics
from search_intel.privacy import PrivacySettingsStore
from search_intel.sources import InMemorySavedSearchRegistry
from search_intel.storage import MemoryStore, StorageCapacityExceeded
from search_intel.suggestions import SearchSuggestions


START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingStore(MemoryStore):
    """Memory store that counts writes per key."""

    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.writes: Dict[str, int] = {}

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self.writes[key] = self.writes.get(key, 0) + 1


class FullStore(MemoryStore):
    """Memory store whose first ``failures`` writes report a full quota."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def set(self, key: str, value: str) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StorageCapacityExceeded("quota exceeded")
        super().set(key, value)


class GatedSource:
    """
    Trending source whose calls block until released.

    ``responses`` maps the 1-based call number to the list that call returns.
    """

    def __init__(self, responses: Dict[int, List[str]]):
        self.responses = responses
        self.gates: Dict[int, asyncio.Event] = {}
        self.tokens: Dict[int, CancellationToken] = {}

    async def __call__(self, prefix: str, token: CancellationToken) -> List[str]:
        call = len(self.gates) + 1
        gate = asyncio.Event()
        self.gates[call] = gate
        self.tokens[call] = token
        await gate.wait()
        token.raise_if_cancelled()
        return list(self.responses.get(call, []))

    async def started(self, call: int) -> None:
        while call not in self.gates:
            await asyncio.sleep(0)

    def release(self, call: int) -> None:
        self.gates[call].set()


class FailingSource:
    """Source that always raises."""

    def __init__(self):
        self.calls = 0

    async def __call__(self, prefix: str, token: CancellationToken) -> List[str]:
        self.calls += 1
        raise RuntimeError("backend unavailable")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def analytics(store, clock):
    recorder = SearchAnalytics(store, batch_delay=0.01, clock=clock)
    yield recorder
    recorder.clear_data()


@pytest.fixture
def privacy(store):
    return PrivacySettingsStore(store)


@pytest.fixture
def registry(clock):
    return InMemorySavedSearchRegistry(clock=clock)


@pytest.fixture
def make_engine(analytics, privacy, registry, clock):
    """Factory building an engine around the shared fixtures."""

    def _make(trending=None, semantic=None, saved_searches=registry, max_cache_size=100):
        return SearchSuggestions(
            analytics,
            privacy,
            saved_searches=saved_searches,
            trending=trending,
            semantic=semantic,
            cache=SuggestionCache(max_size=max_cache_size, clock=clock),
            metrics=SuggestionMetrics(enable_prometheus=False),
            clock=clock,
        )

    return _make
