"""Shared fixtures for mini-kvstore tests."""

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path

import pytest
import pytest_asyncio

from mini_kvstore.store import KeyValueStore


@dataclass
class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    t: int = 1_700_000_000_000

    def now(self) -> int:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += round(seconds * 1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def now(clock: FakeClock) -> Callable[[], int]:
    return clock.now


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Backing file path unique to each test."""
    return tmp_path / "keystore.json"


@pytest_asyncio.fixture
async def store(store_path: Path, now: Callable[[], int]) -> AsyncIterator[KeyValueStore]:
    """Open a fresh KeyValueStore against the test's own file."""
    store = await KeyValueStore.open(store_path, clock=now)
    yield store
    await store.close()
