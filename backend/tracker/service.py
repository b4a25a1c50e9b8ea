"""
Tracking service wiring.
Builds the engine from settings and owns the lifecycle of its connections.
"""
from __future__ import annotations

from typing import Optional

from shared.config import Settings, get_settings
from shared.utils.cache import MemoryTTLCache, RedisTTLCache, TrackingCache
from shared.utils.clock import Clock, utc_now
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.redis_manager import RedisManager

from feeds.base import LiveFeedSource
from feeds.datagolf import DataGolfFeed
from tracker.config import TrackerSettings, get_tracker_settings
from tracker.engine import LiveTrackingEngine
from tracker.store import TrackingStore

logger = get_logger(__name__)


def build_cache(
    settings: TrackerSettings,
    redis: Optional[RedisManager] = None,
    clock: Clock = utc_now,
) -> TrackingCache:
    if settings.cache_backend == "redis":
        if redis is None:
            raise ValueError("cache_backend=redis requires a RedisManager")
        return RedisTTLCache(redis, ttl_s=settings.cache_ttl_s)
    if settings.cache_backend != "memory":
        raise ValueError(f"Unknown cache backend: {settings.cache_backend}")
    return MemoryTTLCache(ttl_s=settings.cache_ttl_s, clock=clock)


def build_tracking_engine(
    db: DatabaseManager,
    redis: Optional[RedisManager] = None,
    feed: Optional[LiveFeedSource] = None,
    settings: Optional[TrackerSettings] = None,
    clock: Clock = utc_now,
) -> LiveTrackingEngine:
    tracker_settings = settings or get_tracker_settings()
    return LiveTrackingEngine(
        store=TrackingStore(db),
        feed=feed or DataGolfFeed(),
        cache=build_cache(tracker_settings, redis, clock),
        settings=tracker_settings,
        clock=clock,
    )


class TrackingService:
    """Owns the database, optional Redis and the feed client behind one engine."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        tracker_settings: Optional[TrackerSettings] = None,
        feed: Optional[LiveFeedSource] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.tracker_settings = tracker_settings or get_tracker_settings()
        self.db = DatabaseManager(self._settings)
        self.redis: Optional[RedisManager] = (
            RedisManager(self._settings) if self.tracker_settings.cache_backend == "redis" else None
        )
        self.feed = feed or DataGolfFeed(self._settings)
        self._engine: Optional[LiveTrackingEngine] = None

    @property
    def engine(self) -> LiveTrackingEngine:
        if self._engine is None:
            raise RuntimeError("TrackingService not started. Call start() first.")
        return self._engine

    async def start(self) -> None:
        setup_logging("tracker", {"environment": self._settings.environment.value})
        try:
            await self.db.connect()
            if self.redis is not None:
                await self.redis.connect()
            await self.feed.start()
        except Exception as e:
            logger.exception("startup_connect_failed", error=str(e))
            raise
        self._engine = build_tracking_engine(
            self.db, self.redis, self.feed, self.tracker_settings
        )
        logger.info(
            "tracker_started",
            cache_backend=self.tracker_settings.cache_backend,
            database=self._settings.database_url_safe_log,
        )

    async def stop(self) -> None:
        await self.feed.close()
        if self.redis is not None:
            await self.redis.disconnect()
        await self.db.disconnect()
        self._engine = None
        logger.info("tracker_stopped")
