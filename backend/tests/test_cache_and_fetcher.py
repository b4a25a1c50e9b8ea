"""
Unit tests for the response cache and the bounded fetch pool.

Run: pytest backend/tests/test_cache_and_fetcher.py -v
"""
from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.utils.cache import MemoryTTLCache, RedisTTLCache, cache_key
from shared.utils.clock import FrozenClock
from shared.utils.redis_manager import RedisManager
from tracker.fetcher import run_with_concurrency_limit


def test_cache_key_skips_empty_parts() -> None:
    assert cache_key("event", "PGA", "14") == "event:PGA:14"
    assert cache_key("active-events", "", None, "live-only") == "active-events:live-only"


# ── MemoryTTLCache ──────────────────────────────────────────────────────

class TestMemoryTTLCache:
    @pytest.mark.asyncio
    async def test_hit_within_ttl(self, clock: FrozenClock) -> None:
        cache = MemoryTTLCache(ttl_s=300, clock=clock)
        await cache.set("k", {"v": 1})
        clock.advance(299)
        assert await cache.get("k") == {"v": 1}

    @pytest.mark.asyncio
    async def test_expires_and_evicts(self, clock: FrozenClock) -> None:
        cache = MemoryTTLCache(ttl_s=300, clock=clock)
        await cache.set("k", {"v": 1})
        clock.advance(300)
        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_per_entry_ttl(self, clock: FrozenClock) -> None:
        cache = MemoryTTLCache(ttl_s=300, clock=clock)
        await cache.set("short", 1, ttl_s=10)
        await cache.set("long", 2)
        clock.advance(minutes=1)
        assert await cache.get("short") is None
        assert await cache.get("long") == 2

    @pytest.mark.asyncio
    async def test_clear(self, clock: FrozenClock) -> None:
        cache = MemoryTTLCache(clock=clock)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.clear()
        assert len(cache) == 0
        assert await cache.get("a") is None

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self, clock: FrozenClock) -> None:
        first, second = MemoryTTLCache(clock=clock), MemoryTTLCache(clock=clock)
        await first.set("k", 1)
        assert await second.get("k") is None


# ── RedisTTLCache ───────────────────────────────────────────────────────

@pytest.fixture
def mock_redis() -> MagicMock:
    r = MagicMock()
    r.get_snapshot = AsyncMock(return_value=None)
    r.set_snapshot = AsyncMock()
    r.delete_snapshots = AsyncMock(return_value=3)
    return r


class TestRedisTTLCache:
    @pytest.mark.asyncio
    async def test_set_writes_json_with_ttl(self, mock_redis: MagicMock) -> None:
        cache = RedisTTLCache(mock_redis, ttl_s=120)
        await cache.set("event:PGA:14", {"rows": []})
        mock_redis.set_snapshot.assert_awaited_once_with("event:PGA:14", json.dumps({"rows": []}), ttl_s=120)

    @pytest.mark.asyncio
    async def test_get_decodes(self, mock_redis: MagicMock) -> None:
        mock_redis.get_snapshot.return_value = '{"rows": [1]}'
        assert await RedisTTLCache(mock_redis).get("k") == {"rows": [1]}

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_is_a_miss(self, mock_redis: MagicMock) -> None:
        mock_redis.get_snapshot.return_value = "{not json"
        assert await RedisTTLCache(mock_redis).get("k") is None

    @pytest.mark.asyncio
    async def test_clear_deletes_snapshots(self, mock_redis: MagicMock) -> None:
        await RedisTTLCache(mock_redis).clear()
        mock_redis.delete_snapshots.assert_awaited_once()


# ── Concurrency-limited fetcher ─────────────────────────────────────────

class TestRunWithConcurrencyLimit:
    @pytest.mark.asyncio
    async def test_never_exceeds_limit(self) -> None:
        in_flight = 0
        peak = 0

        async def handler(item: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return item * 2

        results = await run_with_concurrency_limit(range(10), 3, handler)

        assert peak == 3
        assert sorted(results) == [i * 2 for i in range(10)]

    @pytest.mark.asyncio
    async def test_fewer_items_than_limit(self) -> None:
        handler = AsyncMock(side_effect=lambda item: item)
        assert await run_with_concurrency_limit(["a"], 5, handler) == ["a"]
        handler.assert_awaited_once_with("a")

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        handler = AsyncMock()
        assert await run_with_concurrency_limit([], 3, handler) == []
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_error_propagates_after_others_finish(self) -> None:
        done: list[int] = []

        async def handler(item: int) -> int:
            await asyncio.sleep(0)
            if item == 1:
                raise RuntimeError("boom")
            done.append(item)
            return item

        with pytest.raises(RuntimeError, match="boom"):
            await run_with_concurrency_limit([0, 1, 2, 3], 2, handler)
        assert 3 in done


class TestRedisManagerSnapshots:
    @staticmethod
    def _manager(keys: list[str]):
        async def scan_iter(match: str, count: int):
            for key in keys:
                yield key

        client = MagicMock()
        client.set = AsyncMock()
        client.get = AsyncMock(return_value="{}")
        client.unlink = AsyncMock(side_effect=lambda *batch: len(batch))
        client.scan_iter = scan_iter
        manager = RedisManager(Settings(environment="staging"))
        manager._pool = client
        return manager, client

    @pytest.mark.asyncio
    async def test_keys_are_namespaced_per_environment(self) -> None:
        manager, client = self._manager([])
        await manager.set_snapshot("event:PGA:14", "{}", ttl_s=0)
        client.set.assert_awaited_once_with("lt:staging:tracking:event:PGA:14", "{}", ex=1)
        await manager.get_snapshot("event:PGA:14")
        client.get.assert_awaited_once_with("lt:staging:tracking:event:PGA:14")

    @pytest.mark.asyncio
    async def test_purge_unlinks_in_batches(self) -> None:
        keys = [f"lt:staging:tracking:k{i}" for i in range(450)]
        manager, client = self._manager(keys)
        assert await manager.delete_snapshots() == 450
        assert client.unlink.await_count == 3
