"""
Pytest configuration and shared fixtures for SkillSync tests.

Time is driven through :class:`VirtualScheduler`; no test sleeps for real.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import pytest

from skillsync.services.cache_store import CacheStore
from skillsync.services.query_executor import QueryExecutor
from skillsync.shared.scheduling import ManualClock, VirtualScheduler
from skillsync.storage.kv_store import MemoryKeyValueStore

# Keep host configuration out of Settings() built inside tests.
for _name in [name for name in os.environ if name.startswith("SKILLSYNC_")]:
    del os.environ[_name]


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at a realistic wall-clock time."""
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def scheduler(clock: ManualClock) -> VirtualScheduler:
    """Virtual scheduler bound to the manual clock."""
    return VirtualScheduler(clock)


@pytest.fixture
def cache(scheduler: VirtualScheduler) -> CacheStore:
    """CacheStore with the default 300 s / 600 s windows."""
    return CacheStore(scheduler=scheduler)


@pytest.fixture
def executor(cache: CacheStore, scheduler: VirtualScheduler) -> QueryExecutor:
    """QueryExecutor over the shared cache fixture."""
    return QueryExecutor(cache, scheduler=scheduler)


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    """Empty in-memory key-value store."""
    return MemoryKeyValueStore()


@pytest.fixture
def temp_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """Temporary directory for file-backed stores.

    Yields:
        Path to the temporary directory.
    """
    yield tmp_path
