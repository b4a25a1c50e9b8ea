"""
Shared fixtures: an in-memory store and a scripted feed, so engine-level
tests run without a database or network.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

import pytest

from shared.models.domain import BaselineRecord, DataIssue, Recommendation, TrackedTournament
from shared.models.enums import FeedCategory
from shared.utils.clock import FrozenClock

from feeds.base import LiveFeedSource
from feeds.tour_map import feed_tour_code
from tracker.store import TournamentCandidate


class InMemoryTrackingStore:
    """Implements the TrackingStore surface over plain dicts."""

    def __init__(self) -> None:
        self.runs: dict[str, str] = {}
        self.candidates: list[TournamentCandidate] = []
        self.recommendations: list[Recommendation] = []
        self.baselines: dict[str, BaselineRecord] = {}
        self.issues: list[DataIssue] = []
        self.baseline_inserts = 0

    def add_tournament(
        self,
        tournament: TrackedTournament,
        recs: Sequence[Recommendation] = (),
        run_status: str = "completed",
        count: Optional[int] = None,
    ) -> None:
        self.candidates.append(TournamentCandidate(tournament, run_status, len(recs) if count is None else count))
        self.recommendations.extend(recs)

    async def ensure_run(self, run_key: str, window_start: datetime, window_end: datetime) -> str:
        return self.runs.setdefault(run_key, f"run-{len(self.runs) + 1}")

    async def list_trackable_tournaments(
        self, tours: Iterable[str], now: datetime
    ) -> list[tuple[TrackedTournament, int]]:
        wanted = {t.upper() for t in tours}
        return [
            (c.tournament, c.recommendation_count)
            for c in self.candidates
            if c.run_completed and c.tournament.tour in wanted and c.tournament.end_date >= now
        ]

    async def find_tournament_candidates(self, external_event_id: str, tour: str) -> list[TournamentCandidate]:
        return [
            c
            for c in self.candidates
            if c.tournament.tour == tour
            and external_event_id in (c.tournament.external_event_id, c.tournament.id)
        ]

    async def list_recommendations(self, tournament_ids: Sequence[str]) -> list[Recommendation]:
        return [r for r in self.recommendations if r.tournament_id in tournament_ids]

    async def get_baseline(self, recommendation_id: str) -> Optional[BaselineRecord]:
        return self.baselines.get(recommendation_id)

    async def create_baseline_if_absent(
        self, recommendation_id: str, price: float, book: Optional[str], captured_at: datetime
    ) -> tuple[BaselineRecord, bool]:
        existing = self.baselines.get(recommendation_id)
        if existing is not None:
            return existing, False
        self.baseline_inserts += 1
        record = BaselineRecord(recommendation_id=recommendation_id, price=price, book=book, captured_at=captured_at)
        self.baselines[recommendation_id] = record
        return record, True

    async def add_issue(self, issue: DataIssue) -> None:
        self.issues.append(issue)

    async def list_issues(
        self, run_id: str, severity: Optional[str] = None, tour: Optional[str] = None, limit: int = 500
    ) -> list[DataIssue]:
        found = [
            i
            for i in self.issues
            if i.run_id == run_id
            and (severity is None or i.severity.value == severity)
            and (tour is None or i.tour == tour)
        ]
        return found[:limit]

    async def top_issues(self, run_id: str, limit: int = 10) -> list[tuple[str, int]]:
        counts = Counter(str(getattr(i.step, "value", i.step)) for i in self.issues if i.run_id == run_id)
        return counts.most_common(limit)


class ScriptedFeed(LiveFeedSource):
    """
    Returns canned payloads. A payload that is an Exception instance is raised.
    Outright payloads are keyed by market.
    """

    name = "scripted"

    def __init__(
        self,
        in_play: Any = None,
        live_stats: Any = None,
        outrights: Optional[dict[str, Any]] = None,
    ) -> None:
        self.in_play = in_play
        self.live_stats = live_stats
        self.outrights = outrights or {}
        self.calls: Counter[str] = Counter()

    def tour_code(self, tour: str, category: FeedCategory) -> Optional[str]:
        return feed_tour_code(tour, category)

    @staticmethod
    def _serve(payload: Any) -> Any:
        if isinstance(payload, Exception):
            raise payload
        return payload

    async def fetch_in_play(self, tour_code: str) -> Any:
        self.calls["in_play"] += 1
        return self._serve(self.in_play)

    async def fetch_live_stats(self, tour_code: str) -> Any:
        self.calls["live_stats"] += 1
        return self._serve(self.live_stats)

    async def fetch_outrights(self, tour_code: str, market: str) -> Any:
        self.calls[f"outrights:{market}"] += 1
        return self._serve(self.outrights.get(market))


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 7, 17, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now: datetime) -> FrozenClock:
    return FrozenClock(now)


@pytest.fixture
def store() -> InMemoryTrackingStore:
    return InMemoryTrackingStore()


@pytest.fixture
def feed() -> ScriptedFeed:
    return ScriptedFeed()
