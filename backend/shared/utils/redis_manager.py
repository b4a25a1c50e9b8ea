"""
Redis access for the tracker.
Only the response cache talks to Redis: JSON snapshots under one namespace
per environment, so staging and production can share an instance.
"""
from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

SNAPSHOT_NAMESPACE = "lt:{env}:tracking:"
_DELETE_BATCH = 200


class RedisManager:
    """Async Redis pool plus snapshot get / set / purge."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._prefix = SNAPSHOT_NAMESPACE.format(env=self._settings.environment.value)
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", namespace=self._prefix)

    async def disconnect(self) -> None:
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    def snapshot_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def set_snapshot(self, key: str, data: str, ttl_s: int = 300) -> None:
        # Redis rejects EX 0
        await self.client.set(self.snapshot_key(key), data, ex=max(1, int(ttl_s)))

    async def get_snapshot(self, key: str) -> Optional[str]:
        return await self.client.get(self.snapshot_key(key))

    async def delete_snapshots(self) -> int:
        """Purge every snapshot in this namespace. Returns the number of keys removed."""
        removed = 0
        batch: list[str] = []
        async for key in self.client.scan_iter(match=f"{self._prefix}*", count=_DELETE_BATCH):
            batch.append(key)
            if len(batch) >= _DELETE_BATCH:
                removed += await self.client.unlink(*batch)
                batch.clear()
        if batch:
            removed += await self.client.unlink(*batch)
        logger.info("redis_snapshots_purged", removed=removed)
        return removed
