"""
Abstract base class for live golf data feeds.
Defines the contract the tracker relies on; payloads are returned raw and
normalized by feeds.normalizer.
"""
from __future__ import annotations

import abc
from typing import Any, Optional

from shared.models.enums import FeedCategory
from shared.utils.logging import get_logger

from feeds.tour_map import feed_tour_code

logger = get_logger(__name__)


class FeedError(Exception):
    """An upstream feed call failed after retries, or answered with an error body."""

    def __init__(self, feed: str, endpoint: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{feed} {endpoint}: {message}")
        self.feed = feed
        self.endpoint = endpoint
        self.status = status


class LiveFeedSource(abc.ABC):
    """Source of live scoring, live probabilities and live outright odds."""

    name: str = "feed"

    def tour_code(self, tour: str, category: FeedCategory) -> Optional[str]:
        """Feed-specific tour code, or None when the feed does not cover the tour."""
        return feed_tour_code(tour, category)

    async def start(self) -> None:
        """Acquire network resources. Default: nothing to do."""

    async def close(self) -> None:
        """Release network resources. Default: nothing to do."""

    @abc.abstractmethod
    async def fetch_in_play(self, tour_code: str) -> Any:
        """Live leaderboard with in-play finish probabilities."""
        ...

    @abc.abstractmethod
    async def fetch_live_stats(self, tour_code: str) -> Any:
        """Live tournament stats (scoring only)."""
        ...

    @abc.abstractmethod
    async def fetch_outrights(self, tour_code: str, market: str) -> Any:
        """Current outright prices for one market, or None if the market is not offered."""
        ...
