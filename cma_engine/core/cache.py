import json
from collections import deque
from datetime import datetime, timedelta
from typing import Any, List, Optional, Protocol

import redis
import redis.asyncio as aioredis
from cachetools import TTLCache

from .config import Settings, settings
from ..data.base import MarketPulseSnapshot

class Cache:
    """
    Thin abstraction over Redis/in-memory for short-lived counters
    (rate limiting). Swapping is one flag away.
    """
    def __init__(self, cfg: Settings = settings):
        self.ttl = cfg.RATE_LIMIT_WINDOW_SECONDS
        self.backend = None
        self._local = TTLCache(maxsize=4096, ttl=self.ttl)
        if cfg.USE_REDIS:
            self.backend = redis.Redis.from_url(cfg.REDIS_URL, decode_responses=True)

    def get(self, key: str) -> Any | None:
        if self.backend:
            return self.backend.get(key)
        return self._local.get(key)

    def set(self, key: str, value: str) -> None:
        if self.backend:
            self.backend.setex(key, self.ttl, value)
        else:
            self._local[key] = value

    def incr(self, key: str) -> int:
        if self.backend:
            # INCR + EXPIRE is atomic enough for a per-minute bucket
            pipe = self.backend.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.ttl)
            return int(pipe.execute()[0])
        count = int(self._local.get(key, 0)) + 1
        self._local[key] = count
        return count

cache = Cache()

# ----- Market pulse snapshot persistence -----

class SnapshotStore(Protocol):
    """Latest-snapshot persistence: overwrite on set, optional bounded history."""
    async def get(self) -> Optional[MarketPulseSnapshot]: ...
    async def set(self, snapshot: MarketPulseSnapshot) -> None: ...
    async def age(self, now: datetime) -> Optional[timedelta]: ...
    async def history(self, limit: int = 10) -> List[MarketPulseSnapshot]: ...

class MemorySnapshotStore(SnapshotStore):
    def __init__(self, history_size: int = 48):
        self._latest: Optional[MarketPulseSnapshot] = None
        self._history: deque = deque(maxlen=max(1, history_size))

    async def get(self) -> Optional[MarketPulseSnapshot]:
        return self._latest

    async def set(self, snapshot: MarketPulseSnapshot) -> None:
        self._latest = snapshot
        self._history.appendleft(snapshot)

    async def age(self, now: datetime) -> Optional[timedelta]:
        latest = self._latest
        return None if latest is None else now - latest.captured_at

    async def history(self, limit: int = 10) -> List[MarketPulseSnapshot]:
        return list(self._history)[:max(0, limit)]

class RedisSnapshotStore(SnapshotStore):
    """
    Latest snapshot under `key`, recent ones in the list `key:history`
    (newest first, trimmed to `history_size`). Uses the asyncio client so
    market pulse reads never block the event loop.
    """
    def __init__(self, client: "aioredis.Redis", key: str, history_size: int = 48):
        self.client = client
        self.key = key
        self.history_key = f"{key}:history"
        self.history_size = max(1, history_size)

    async def get(self) -> Optional[MarketPulseSnapshot]:
        raw = await self.client.get(self.key)
        return MarketPulseSnapshot.from_dict(json.loads(raw)) if raw else None

    async def set(self, snapshot: MarketPulseSnapshot) -> None:
        raw = json.dumps(snapshot.to_dict(), separators=(",", ":"))
        pipe = self.client.pipeline()
        pipe.set(self.key, raw)
        pipe.lpush(self.history_key, raw)
        pipe.ltrim(self.history_key, 0, self.history_size - 1)
        await pipe.execute()

    async def age(self, now: datetime) -> Optional[timedelta]:
        latest = await self.get()
        return None if latest is None else now - latest.captured_at

    async def history(self, limit: int = 10) -> List[MarketPulseSnapshot]:
        if limit <= 0:
            return []
        rows = await self.client.lrange(self.history_key, 0, limit - 1)
        return [MarketPulseSnapshot.from_dict(json.loads(r)) for r in rows]

def snapshot_store(cfg: Settings = settings) -> SnapshotStore:
    """
    Factory picks Redis or in-memory based on env flags.
    """
    if cfg.USE_REDIS:
        client = aioredis.Redis.from_url(cfg.REDIS_URL, decode_responses=True)
        return RedisSnapshotStore(client, cfg.SNAPSHOT_KEY, cfg.SNAPSHOT_HISTORY_SIZE)
    return MemorySnapshotStore(cfg.SNAPSHOT_HISTORY_SIZE)
