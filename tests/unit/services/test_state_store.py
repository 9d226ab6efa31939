"""Tests for snapshot persistence backends."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from quotestream.config import Settings
from quotestream.services.events.bus import EventBus
from quotestream.services.events.schemas import CRYPTO_TOP100, Quote, quotes_event
from quotestream.services.state_store import (
    CONFIG_RECORD,
    LAST_EVENT_RECORD,
    FileStateBackend,
    InMemoryStateBackend,
    RedisStateBackend,
    build_state_backend,
    drain_background_writes,
    spawn_best_effort,
)


class TestInMemoryBackend:
    """Tests for the process-local backend."""

    @pytest.mark.asyncio
    async def test_save_and_load(self):
        backend = InMemoryStateBackend()
        assert await backend.save(CONFIG_RECORD, {"intervals": {"GLOBAL": 5000}})
        assert await backend.load(CONFIG_RECORD) == {"intervals": {"GLOBAL": 5000}}

    @pytest.mark.asyncio
    async def test_loaded_copy_is_detached(self):
        backend = InMemoryStateBackend()
        await backend.save(CONFIG_RECORD, {"paused": {}})
        loaded = await backend.load(CONFIG_RECORD)
        loaded["paused"]["GLOBAL"] = True

        assert await backend.load(CONFIG_RECORD) == {"paused": {}}

    @pytest.mark.asyncio
    async def test_missing_record(self):
        assert await InMemoryStateBackend().load(LAST_EVENT_RECORD) is None


class TestFileBackend:
    """Tests for the JSON file fallback."""

    @pytest.mark.asyncio
    async def test_writes_named_files(self, tmp_path):
        backend = FileStateBackend(str(tmp_path / "data"))

        assert await backend.save(CONFIG_RECORD, {"a": 1})
        assert await backend.save(LAST_EVENT_RECORD, {"type": "crypto_top100"})

        assert json.loads((tmp_path / "data" / "admin_config.json").read_text()) == {"a": 1}
        assert (tmp_path / "data" / "last_event.json").exists()
        assert await backend.load(LAST_EVENT_RECORD) == {"type": "crypto_top100"}

    @pytest.mark.asyncio
    async def test_missing_file_returns_none(self, tmp_path):
        assert await FileStateBackend(str(tmp_path)).load(CONFIG_RECORD) is None

    @pytest.mark.asyncio
    async def test_corrupt_file_returns_none(self, tmp_path):
        (tmp_path / "admin_config.json").write_text("{not json")
        assert await FileStateBackend(str(tmp_path)).load(CONFIG_RECORD) is None

    @pytest.mark.asyncio
    async def test_non_object_file_returns_none(self, tmp_path):
        (tmp_path / "admin_config.json").write_text("[1, 2]")
        assert await FileStateBackend(str(tmp_path)).load(CONFIG_RECORD) is None

    @pytest.mark.asyncio
    async def test_unwritable_dir_returns_false(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        backend = FileStateBackend(str(blocker / "data"))

        assert await backend.save(CONFIG_RECORD, {"a": 1}) is False


class TestRedisBackend:
    """Tests for the Redis backend with a mocked client."""

    @pytest.fixture
    def mock_redis(self):
        redis = AsyncMock()
        redis.get = AsyncMock(return_value=None)
        redis.set = AsyncMock(return_value=True)
        redis.aclose = AsyncMock()
        return redis

    @pytest.fixture
    def backend(self, mock_redis):
        backend = RedisStateBackend(redis_url="redis://localhost:6379/0")
        backend._redis = mock_redis
        return backend

    @pytest.mark.asyncio
    async def test_save_uses_record_key(self, backend, mock_redis):
        assert await backend.save(CONFIG_RECORD, {"a": 1})
        mock_redis.set.assert_awaited_once_with("admin:config", json.dumps({"a": 1}))

    @pytest.mark.asyncio
    async def test_load_decodes_json(self, backend, mock_redis):
        mock_redis.get.return_value = json.dumps({"type": "bist_top100"})

        assert await backend.load(LAST_EVENT_RECORD) == {"type": "bist_top100"}
        mock_redis.get.assert_awaited_once_with("events:last")

    @pytest.mark.asyncio
    async def test_load_failure_returns_none(self, backend, mock_redis):
        mock_redis.get.side_effect = ConnectionError("redis down")
        assert await backend.load(CONFIG_RECORD) is None

    @pytest.mark.asyncio
    async def test_save_failure_returns_false(self, backend, mock_redis):
        mock_redis.set.side_effect = ConnectionError("redis down")
        assert await backend.save(CONFIG_RECORD, {"a": 1}) is False

    @pytest.mark.asyncio
    async def test_close(self, backend, mock_redis):
        await backend.close()
        mock_redis.aclose.assert_awaited_once()
        assert backend._redis is None


class TestBackendSelection:
    """Tests for build_state_backend."""

    def test_redis_when_configured(self):
        settings = Settings(redis_url="redis://localhost:6379/0")
        assert build_state_backend(settings).kind == "redis"

    def test_file_fallback(self, tmp_path):
        settings = Settings(redis_url=None, redis_host=None, data_dir=str(tmp_path))
        assert build_state_backend(settings).kind == "file"


class TestBestEffortWrites:
    """Tests for fire-and-forget persistence."""

    @pytest.mark.asyncio
    async def test_write_completes_in_background(self):
        backend = InMemoryStateBackend()
        task = spawn_best_effort(backend.save(CONFIG_RECORD, {"a": 1}), name="test")

        assert task is not None
        await drain_background_writes()
        assert backend.records[CONFIG_RECORD] == {"a": 1}

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self):
        async def boom():
            raise RuntimeError("disk full")

        spawn_best_effort(boom(), name="test")
        await drain_background_writes()
        await asyncio.sleep(0)

    def test_without_running_loop(self):
        backend = InMemoryStateBackend()
        assert spawn_best_effort(backend.save(CONFIG_RECORD, {}), name="test") is None
        assert backend.records == {}


class TestWriteOrdering:
    """Tests for overlapping saves of one record."""

    @pytest.mark.asyncio
    async def test_burst_of_publishes_persists_final_event(self, tmp_path):
        backend = FileStateBackend(str(tmp_path))
        bus = EventBus(backend)

        for i in range(30):
            bus.publish(quotes_event(CRYPTO_TOP100, [Quote(symbol="BTCUSDT", price=i + 1)]))
        await drain_background_writes()

        stored = await backend.load(LAST_EVENT_RECORD)
        assert stored["data"][0]["price"] == 30
        assert list(tmp_path.glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_queued_save_superseded_by_newer_one(self):
        written = []

        async def slow_set(key, value):
            await asyncio.sleep(0.01)
            written.append(json.loads(value)["n"])

        redis = AsyncMock()
        redis.set = AsyncMock(side_effect=slow_set)
        backend = RedisStateBackend(redis_url="redis://localhost:6379/0")
        backend._redis = redis

        results = await asyncio.gather(
            *(backend.save(LAST_EVENT_RECORD, {"n": n}) for n in (1, 2, 3))
        )

        assert results == [True, True, True]
        assert written == [1, 3]

    @pytest.mark.asyncio
    async def test_records_are_ordered_independently(self, tmp_path):
        backend = FileStateBackend(str(tmp_path))

        await asyncio.gather(
            backend.save(CONFIG_RECORD, {"a": 1}),
            backend.save(LAST_EVENT_RECORD, {"type": "bist_top100"}),
        )

        assert await backend.load(CONFIG_RECORD) == {"a": 1}
        assert await backend.load(LAST_EVENT_RECORD) == {"type": "bist_top100"}
