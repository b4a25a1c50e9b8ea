"""
Response cache for tracking results.

Two interchangeable backends behind one async interface:
- MemoryTTLCache: per-process dict, expiry driven by an injected clock.
- RedisTTLCache: JSON snapshots in Redis with a server-side TTL.

Entries are advisory: no coherence across processes and no invalidation
beyond TTL expiry and an explicit clear().
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_LOOKUPS
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)

DEFAULT_TTL_S = 300


def cache_key(*parts: Any) -> str:
    """Join non-empty parts with ':'."""
    return ":".join(str(p) for p in parts if p is not None and str(p) != "")


class TrackingCache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None: ...

    async def clear(self) -> None: ...


@dataclass
class CacheEntry:
    value: Any
    expires_at: datetime


class MemoryTTLCache:
    """In-process TTL cache. Expired entries are evicted on read."""

    def __init__(self, ttl_s: float = DEFAULT_TTL_S, clock: Clock = utc_now) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            CACHE_LOOKUPS.labels(backend="memory", result="miss").inc()
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            CACHE_LOOKUPS.labels(backend="memory", result="expired").inc()
            return None
        CACHE_LOOKUPS.labels(backend="memory", result="hit").inc()
        return entry.value

    async def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        ttl = self._ttl_s if ttl_s is None else ttl_s
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + timedelta(seconds=ttl))

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisTTLCache:
    """Redis-backed cache. Values must be JSON-serializable."""

    def __init__(self, redis: RedisManager, ttl_s: float = DEFAULT_TTL_S) -> None:
        self._redis = redis
        self._ttl_s = ttl_s

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._redis.get_snapshot(key)
        if raw is None:
            CACHE_LOOKUPS.labels(backend="redis", result="miss").inc()
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("cache_snapshot_corrupt", key=key)
            CACHE_LOOKUPS.labels(backend="redis", result="miss").inc()
            return None
        CACHE_LOOKUPS.labels(backend="redis", result="hit").inc()
        return value

    async def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        ttl = self._ttl_s if ttl_s is None else ttl_s
        await self._redis.set_snapshot(key, json.dumps(value, default=str), ttl_s=int(ttl))

    async def clear(self) -> None:
        removed = await self._redis.delete_snapshots()
        logger.info("cache_cleared", backend="redis", removed=removed)
