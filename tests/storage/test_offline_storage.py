"""Tests for OfflineStorage snapshots."""

import logging

import orjson
import pytest

from skillsync.shared.scheduling import ManualClock
from skillsync.storage.kv_store import MemoryKeyValueStore
from skillsync.storage.offline_storage import OfflineStorage


@pytest.fixture
def storage(memory_store: MemoryKeyValueStore, clock: ManualClock) -> OfflineStorage:
    return OfflineStorage(memory_store, clock=clock)


class TestOfflineStorage:
    """Prefixed JSON-with-timestamp snapshots."""

    @pytest.mark.asyncio
    async def test_store_and_retrieve(
        self, storage: OfflineStorage, memory_store: MemoryKeyValueStore, clock: ManualClock
    ) -> None:
        assert await storage.store("profile", {"name": "Ada"}) is True

        assert await storage.retrieve("profile") == {"name": "Ada"}
        raw = orjson.loads(await memory_store.get("offline_profile"))
        assert raw == {"data": {"name": "Ada"}, "timestamp": clock.now()}

    @pytest.mark.asyncio
    async def test_retrieve_missing(self, storage: OfflineStorage) -> None:
        assert await storage.retrieve("nothing") is None

    @pytest.mark.asyncio
    async def test_max_age(self, storage: OfflineStorage, clock: ManualClock) -> None:
        await storage.store("skills", [1, 2])
        clock.advance(100)

        assert await storage.retrieve("skills", max_age=200) == [1, 2]
        assert await storage.retrieve("skills", max_age=50) is None

    @pytest.mark.asyncio
    async def test_unserializable_data_logged(self, storage: OfflineStorage, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="skillsync.storage.offline_storage"):
            assert await storage.store("bad", {"x": object()}) is False

        assert any(r.levelno == logging.WARNING for r in caplog.records)

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_returns_none(
        self, storage: OfflineStorage, memory_store: MemoryKeyValueStore
    ) -> None:
        await memory_store.set("offline_broken", b"\xff not json")

        assert await storage.retrieve("broken") is None

    @pytest.mark.asyncio
    async def test_clear_and_info_only_touch_prefixed_keys(
        self, storage: OfflineStorage, memory_store: MemoryKeyValueStore
    ) -> None:
        await memory_store.set("skillsync:offline_actions", b"[]")
        await storage.store("a", 1)
        await storage.store("b", {"k": "v"})

        info = await storage.storage_info()
        assert sorted(info.keys) == ["a", "b"]
        assert info.total_size > 0

        assert await storage.clear() == 2
        assert await memory_store.keys() == ["skillsync:offline_actions"]

    @pytest.mark.asyncio
    async def test_remove(self, storage: OfflineStorage) -> None:
        await storage.store("a", 1)
        await storage.remove("a")

        assert await storage.retrieve("a") is None
