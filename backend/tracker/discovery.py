"""
Event discovery: tournaments that have published recommendations and are
upcoming or in play.

Being "in play" by the calendar is not enough to report an event as live;
the in-play feed is probed once per tour, and an empty or failed probe is
reported as in_progress_no_data (off-season gaps and pre-tee-time windows
are normal, so it is an info issue, not an error).
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional, Protocol

from shared.models.domain import DiscoveredEvent, TrackedTournament
from shared.models.enums import EventStatus, FeedCategory, IssueCode
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger

from feeds.base import LiveFeedSource
from feeds.normalizer import extract_rows
from tracker.issues import IssueCollector

logger = get_logger(__name__)


class DiscoveryStore(Protocol):
    async def list_trackable_tournaments(
        self, tours: Iterable[str], now: datetime
    ) -> list[tuple[TrackedTournament, int]]: ...


def days_until(start: datetime, now: datetime) -> int:
    return math.ceil((start - now).total_seconds() / 86400)


def merge_duplicate_events(events: Iterable[DiscoveredEvent]) -> list[DiscoveredEvent]:
    """
    Collapse records sharing (external id, tour). The first record seen keeps
    its metadata; tracked counts add up and any live constituent makes the
    merged entry live.
    """
    merged: dict[tuple[str, str], DiscoveredEvent] = {}
    for event in events:
        key = (event.external_event_id or event.tournament_id, event.tour)
        existing = merged.get(key)
        if existing is None:
            merged[key] = event.model_copy()
            continue
        existing.tracked_count += event.tracked_count
        if event.status == EventStatus.LIVE:
            existing.status = EventStatus.LIVE
            existing.days_until_start = None
    return list(merged.values())


def sort_events(events: Iterable[DiscoveredEvent]) -> list[DiscoveredEvent]:
    return sorted(events, key=lambda e: (e.status != EventStatus.LIVE, e.start_date))


class EventDiscovery:
    def __init__(
        self,
        store: DiscoveryStore,
        feed: LiveFeedSource,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._feed = feed
        self._clock = clock

    async def _probe_tour(self, tour: str, issues: IssueCollector) -> bool:
        """True when the in-play feed currently returns rows for `tour`."""
        code = self._feed.tour_code(tour, FeedCategory.PREDS)
        if code is None:
            await issues.warning(
                IssueCode.TOUR_NOT_SUPPORTED, "No live scoring feed for tour", tour=tour, category="preds"
            )
            return False
        try:
            payload = await self._feed.fetch_in_play(code)
        except Exception as exc:
            logger.info("in_play_probe_failed", tour=tour, error=str(exc))
            await issues.info(
                IssueCode.EVENT_NOT_IN_PLAY, "In-play feed unavailable", tour=tour, error=str(exc)
            )
            return False
        if not extract_rows(payload):
            await issues.info(IssueCode.EVENT_NOT_IN_PLAY, "In-play feed returned no rows", tour=tour)
            return False
        return True

    async def discover(
        self,
        tours: Iterable[str],
        include_upcoming: bool,
        issues: IssueCollector,
    ) -> list[DiscoveredEvent]:
        now = self._clock()
        tours = [t.upper() for t in tours]
        candidates = await self._store.list_trackable_tournaments(tours, now)
        probes: dict[str, bool] = {}
        found: list[DiscoveredEvent] = []

        for tournament, tracked in candidates:
            upcoming = tournament.start_date > now
            if upcoming and not include_upcoming:
                continue

            days: Optional[int] = None
            if upcoming:
                status = EventStatus.UPCOMING
                days = days_until(tournament.start_date, now)
            else:
                if tournament.tour not in probes:
                    probes[tournament.tour] = await self._probe_tour(tournament.tour, issues)
                status = EventStatus.LIVE if probes[tournament.tour] else EventStatus.IN_PROGRESS_NO_DATA

            found.append(
                DiscoveredEvent(
                    tournament_id=tournament.id,
                    external_event_id=tournament.external_event_id,
                    tour=tournament.tour,
                    event_name=tournament.event_name,
                    start_date=tournament.start_date,
                    end_date=tournament.end_date,
                    status=status,
                    days_until_start=days,
                    tracked_count=tracked,
                )
            )

        events = sort_events(merge_duplicate_events(found))
        logger.info("events_discovered", tours=tours, candidates=len(candidates), events=len(events))
        return events
