"""Durable key-value persistence for config and last-event snapshots.

Two records are stored, each overwritten on every change:

- ``config``: the admin ConfigState (intervals, paused, overrides)
- ``last_event``: the most recent MarketEvent published on the bus

A Redis backend is used when configured, otherwise JSON files under the
data directory. Backends never raise: load failures return None and
save failures return False, both logged. Callers keep their in-memory
state authoritative either way.
"""

import asyncio
import itertools
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Optional

import structlog

from quotestream.config import Settings

logger = structlog.get_logger(__name__)

CONFIG_RECORD = "config"
LAST_EVENT_RECORD = "last_event"


class StateBackend(ABC):
    """Abstract interface for snapshot persistence."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """Short backend name for logs and health output."""
        ...

    @abstractmethod
    async def load(self, record: str) -> Optional[dict[str, Any]]:
        """Load a record, or None if missing or unreadable."""
        ...

    @abstractmethod
    async def save(self, record: str, payload: dict[str, Any]) -> bool:
        """Overwrite a record. Returns False on failure."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


class LatestWriteWins:
    """
    Serialise saves per record and skip the ones already superseded.

    Saves for one record run one at a time in call order. A save that is
    still waiting when a newer one arrives is dropped, so the newest
    payload is always the last to land.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._latest: dict[str, int] = {}
        self._seq = itertools.count(1)

    async def run(self, record: str, write: Callable[[], Awaitable[bool]]) -> bool:
        seq = next(self._seq)
        self._latest[record] = seq
        lock = self._locks.setdefault(record, asyncio.Lock())
        async with lock:
            if self._latest[record] != seq:
                return True
            return await write()


class InMemoryStateBackend(StateBackend):
    """Process-local backend (tests, or when nothing durable is wanted)."""

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}

    @property
    def kind(self) -> str:
        return "memory"

    async def load(self, record: str) -> Optional[dict[str, Any]]:
        payload = self.records.get(record)
        return json.loads(json.dumps(payload)) if payload is not None else None

    async def save(self, record: str, payload: dict[str, Any]) -> bool:
        self.records[record] = json.loads(json.dumps(payload))
        return True


class FileStateBackend(StateBackend):
    """JSON files under a data directory, one file per record."""

    FILENAMES = {
        CONFIG_RECORD: "admin_config.json",
        LAST_EVENT_RECORD: "last_event.json",
    }

    def __init__(self, data_dir: str):
        self._dir = Path(data_dir)
        self._writes = LatestWriteWins()

    @property
    def kind(self) -> str:
        return "file"

    def path_for(self, record: str) -> Path:
        return self._dir / self.FILENAMES.get(record, f"{record}.json")

    def _read(self, path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, path: Path, payload: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f"{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp = Path(f.name)
            try:
                json.dump(payload, f)
            except Exception:
                f.close()
                tmp.unlink(missing_ok=True)
                raise
        try:
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    async def load(self, record: str) -> Optional[dict[str, Any]]:
        path = self.path_for(record)
        try:
            data = await asyncio.to_thread(self._read, path)
        except Exception as e:
            logger.warning("state_load_failed", backend=self.kind, record=record, error=str(e))
            return None
        return data if isinstance(data, dict) else None

    async def save(self, record: str, payload: dict[str, Any]) -> bool:
        return await self._writes.run(record, lambda: self._save(record, payload))

    async def _save(self, record: str, payload: dict[str, Any]) -> bool:
        path = self.path_for(record)
        try:
            await asyncio.to_thread(self._write, path, payload)
            return True
        except Exception as e:
            logger.warning("state_persist_failed", backend=self.kind, record=record, error=str(e))
            return False


class RedisStateBackend(StateBackend):
    """Redis string keys holding JSON documents."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 6379,
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls: bool = False,
        keys: Optional[dict[str, str]] = None,
    ):
        self._redis_url = redis_url
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._tls = tls
        self._keys = keys or {
            CONFIG_RECORD: "admin:config",
            LAST_EVENT_RECORD: "events:last",
        }
        self._redis: "redis.asyncio.Redis | None" = None
        self._writes = LatestWriteWins()

    @property
    def kind(self) -> str:
        return "redis"

    def key_for(self, record: str) -> str:
        return self._keys.get(record, record)

    async def _get_redis(self) -> "redis.asyncio.Redis":
        """Get or create Redis connection."""
        if self._redis is None:
            import redis.asyncio as redis_async

            if self._redis_url:
                self._redis = redis_async.from_url(
                    self._redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5.0,
                    socket_keepalive=True,
                )
            else:
                self._redis = redis_async.Redis(
                    host=self._host,
                    port=self._port,
                    username=self._username,
                    password=self._password,
                    ssl=self._tls,
                    decode_responses=True,
                    socket_connect_timeout=5.0,
                )
            logger.info("redis_state_backend_created", host=self._host or "url")
        return self._redis

    async def load(self, record: str) -> Optional[dict[str, Any]]:
        try:
            redis = await self._get_redis()
            raw = await redis.get(self.key_for(record))
            if not raw:
                return None
            data = json.loads(raw)
        except Exception as e:
            logger.warning("state_load_failed", backend=self.kind, record=record, error=str(e))
            return None
        return data if isinstance(data, dict) else None

    async def save(self, record: str, payload: dict[str, Any]) -> bool:
        return await self._writes.run(record, lambda: self._save(record, payload))

    async def _save(self, record: str, payload: dict[str, Any]) -> bool:
        try:
            redis = await self._get_redis()
            await redis.set(self.key_for(record), json.dumps(payload))
            return True
        except Exception as e:
            logger.warning("state_persist_failed", backend=self.kind, record=record, error=str(e))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("redis_state_backend_closed")


def build_state_backend(settings: Settings) -> StateBackend:
    """Select the persistence backend once at startup."""
    if settings.redis_configured:
        backend: StateBackend = RedisStateBackend(
            redis_url=settings.redis_url,
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            tls=settings.redis_tls,
            keys={
                CONFIG_RECORD: settings.config_redis_key,
                LAST_EVENT_RECORD: settings.last_event_redis_key,
            },
        )
    else:
        backend = FileStateBackend(settings.data_dir)
    logger.info("state_backend_selected", backend=backend.kind)
    return backend


# ===========================================
# Fire-and-forget writes
# ===========================================

_background_tasks: set[asyncio.Task] = set()


def spawn_best_effort(coro: Coroutine[Any, Any, Any], name: str) -> Optional[asyncio.Task]:
    """
    Schedule a persistence write without awaiting it.

    No durability is promised at the moment of a crash: the caller moves
    on immediately and any failure is only logged. Returns None (and
    closes the coroutine) when no event loop is running.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        logger.debug("best_effort_write_skipped", name=name, reason="no_running_loop")
        return None

    task = loop.create_task(coro, name=name)
    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.warning("best_effort_write_failed", name=name, error=str(exc))

    task.add_done_callback(_done)
    return task


async def drain_background_writes() -> None:
    """Wait for pending fire-and-forget writes (shutdown and tests)."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
