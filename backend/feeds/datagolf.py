"""
DataGolf live feed.

Endpoints used:
    /preds/in-play                  live leaderboard + finish probabilities
    /preds/live-tournament-stats    live scoring without probabilities
    /betting-tools/outrights        outright prices per market, all books
"""
from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.http_client import FeedHTTPClient
from shared.utils.logging import get_logger

from feeds.base import FeedError, LiveFeedSource
from feeds.markets import normalize_market_key, parse_top_n
from feeds.normalizer import extract_event_meta, extract_rows, payload_error

logger = get_logger(__name__)

IN_PLAY_PATH = "/preds/in-play"
LIVE_STATS_PATH = "/preds/live-tournament-stats"
OUTRIGHTS_PATH = "/betting-tools/outrights"

# outright markets the endpoint prices
OUTRIGHT_MARKETS = frozenset({"win", "top_5", "top_10", "top_20", "mc", "make_cut", "frl"})


def outright_market(market: str) -> Optional[str]:
    """Internal market key -> outrights `market` parameter, or None if not offered."""
    key = normalize_market_key(market)
    n = parse_top_n(key)
    if n is not None:
        key = f"top_{n}"
    return key if key in OUTRIGHT_MARKETS else None


class DataGolfFeed(LiveFeedSource):
    name = "datagolf"

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: FeedHTTPClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http = http_client or FeedHTTPClient(
            feed_name=self.name,
            base_url=self._settings.feed_base_url,
        )
        # (endpoint, tour) pairs already described in the debug log
        self._described: set[str] = set()

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def _request(self, path: str, params: dict[str, Any], debug_key: str) -> Any:
        query = {**params, "file_format": "json", "key": self._settings.feed_api_key}
        try:
            payload = await self._http.get_json(path, params=query)
        except httpx.HTTPStatusError as exc:
            raise FeedError(self.name, path, f"HTTP {exc.response.status_code}", exc.response.status_code) from exc
        except (httpx.TransportError, ValueError) as exc:
            raise FeedError(self.name, path, str(exc) or type(exc).__name__) from exc

        error = payload_error(payload)
        if error:
            raise FeedError(self.name, path, error)
        self._describe(path, debug_key, payload)
        return payload

    def _describe(self, path: str, debug_key: str, payload: Any) -> None:
        if not self._settings.feed_debug_requests or debug_key in self._described:
            return
        self._described.add(debug_key)
        event_id, event_name = extract_event_meta(payload)
        snippet = json.dumps(payload, default=str)[:800]
        logger.info(
            "feed_payload_shape",
            feed=self.name,
            endpoint=path,
            keys=sorted(payload) if isinstance(payload, dict) else [],
            rows=len(extract_rows(payload)),
            event_id=event_id,
            event_name=event_name,
            snippet=snippet,
        )

    async def fetch_in_play(self, tour_code: str) -> Any:
        return await self._request(
            IN_PLAY_PATH, {"tour": tour_code, "dead_heat": "no", "odds_format": "percent"}, f"in-play:{tour_code}"
        )

    async def fetch_live_stats(self, tour_code: str) -> Any:
        return await self._request(
            LIVE_STATS_PATH, {"tour": tour_code, "display": "value"}, f"live-stats:{tour_code}"
        )

    async def fetch_outrights(self, tour_code: str, market: str) -> Any:
        feed_market = outright_market(market)
        if feed_market is None:
            return None
        return await self._request(
            OUTRIGHTS_PATH,
            {"tour": tour_code, "market": feed_market, "odds_format": "decimal"},
            f"outrights:{tour_code}:{feed_market}",
        )
