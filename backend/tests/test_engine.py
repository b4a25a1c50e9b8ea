"""
End-to-end tests for LiveTrackingEngine against a scripted feed and an
in-memory store.

Run: pytest backend/tests/test_engine.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import pytest

from shared.models.domain import BaselineRecord, Recommendation, TrackedTournament
from shared.models.enums import EventStatus, IssueCode, MovementDirection, Outcome
from shared.utils.cache import MemoryTTLCache
from tracker.config import TrackerSettings
from tracker.engine import LiveTrackingEngine, dedupe_recommendations, unique_markets


def _in_play(event_id: Any = 14, final: bool = False) -> dict[str, Any]:
    round_, thru = (4, "F") if final else (2, 9)
    return {
        "event_name": "Genesis Scottish Open",
        "info": {"event_id": event_id},
        "data": [
            {"dg_id": 18417, "player_name": "Scheffler, Scottie", "current_pos": "1", "current_score": -8,
             "round": round_, "thru": thru, "R1": 64, "win": 0.35, "make_cut": 0.99},
            {"dg_id": 22085, "player_name": "McIlroy, Rory", "current_pos": "T12", "current_score": -3,
             "round": round_, "thru": thru if final else 11, "R1": 69, "top_10": 0.4},
            {"dg_id": 30911, "player_name": "Kim, Tom", "current_pos": "MC", "current_score": 4, "R1": 75, "R2": 73},
        ],
    }


OUTRIGHTS = {
    "win": {"odds": [{"dg_id": 18417, "player_name": "Scheffler, Scottie", "bet365": 6.0, "fanduel": 5.5,
                      "betfair": 6.2}]},
    "top_10": {"odds": [{"dg_id": 22085, "player_name": "McIlroy, Rory", "bet365": 2.8, "betfair": 2.9}]},
    "mc": {"odds": [{"dg_id": 30911, "player_name": "Kim, Tom", "bet365": 3.4, "betfair": 3.5}]},
}


def _codes(row) -> list[str]:
    return list(row.data_issues)


@pytest.fixture
def settings() -> TrackerSettings:
    return TrackerSettings(cache_ttl_s=300, max_concurrency=2)


@pytest.fixture
def tournament(now: datetime) -> TrackedTournament:
    return TrackedTournament(
        id="t-1",
        run_id="weekly-1",
        tour="PGA",
        external_event_id="14",
        event_name="Genesis Scottish Open",
        start_date=now - timedelta(days=1, hours=9),
        end_date=now + timedelta(days=2, hours=8),
    )


@pytest.fixture
def recs(now: datetime) -> list[Recommendation]:
    base = dict(run_id="weekly-1", tournament_id="t-1", tier="A", created_at=now - timedelta(days=3))
    return [
        Recommendation(id="rec-win", market_key="win", selection="Scottie Scheffler", external_player_id="18417",
                       confidence=5, edge=0.04, baseline_book="bet365", baseline_price=5.0, **base),
        Recommendation(id="rec-t10", market_key="top_10", selection="Rory McIlroy", external_player_id="22085",
                       confidence=4, baseline_book="williamhill", baseline_price=3.0, **base),
        Recommendation(id="rec-mc", market_key="mc", selection="Tom Kim", confidence=3, **base),
    ]


@pytest.fixture
def engine(store, feed, clock, settings) -> LiveTrackingEngine:
    return LiveTrackingEngine(store, feed, MemoryTTLCache(ttl_s=settings.cache_ttl_s, clock=clock), settings, clock)


@pytest.fixture
def live_event(store, feed, tournament, recs) -> None:
    store.add_tournament(tournament, recs)
    feed.in_play = _in_play()
    feed.outrights = dict(OUTRIGHTS)


def _row(response, rec_id: str):
    return next(r for r in response.rows if r.recommendation_id == rec_id)


# ── Helpers ─────────────────────────────────────────────────────────────

def test_dedupe_keeps_first_per_selection_and_market(recs: list[Recommendation]) -> None:
    dup = recs[0].model_copy(update={"id": "rec-win-2", "selection": "scottie  scheffler", "market_key": "WIN"})
    assert [r.id for r in dedupe_recommendations([*recs, dup])] == ["rec-win", "rec-t10", "rec-mc"]


def test_unique_markets_normalized(recs: list[Recommendation]) -> None:
    extra = recs[0].model_copy(update={"market_key": "WIN "})
    assert unique_markets([*recs, extra]) == ["win", "top_10", "mc"]


# ── Live tracking ───────────────────────────────────────────────────────

class TestLiveTracking:
    @pytest.mark.asyncio
    async def test_rows_joined_and_priced(self, engine, live_event, now) -> None:
        response = await engine.get_event_tracking("14", "pga")

        assert response.status == EventStatus.LIVE
        assert response.event_name == "Genesis Scottish Open"
        assert [r.recommendation_id for r in response.rows] == ["rec-win", "rec-t10", "rec-mc"]

        win = _row(response, "rec-win")
        assert win.scoring.position == 1
        assert win.current_price == 6.0
        assert win.current_book == "bet365"
        assert win.current_fetched_at == now
        assert win.odds_movement.direction == MovementDirection.UP
        assert win.odds_movement.pct_change == pytest.approx(0.2)
        assert win.market_prob == 0.35
        assert win.market_prob_label == "Win"
        assert win.outcome == Outcome.PENDING
        assert win.data_issues == []

    @pytest.mark.asyncio
    async def test_cross_book_row(self, engine, live_event) -> None:
        t10 = _row(await engine.get_event_tracking("14", "PGA"), "rec-t10")

        assert t10.current_book == "bet365"
        assert t10.current_price == 2.8
        assert t10.odds_movement.cross_book is True
        assert t10.odds_movement.direction == MovementDirection.DOWN
        assert t10.market_prob_label == "Top 10"
        assert _codes(t10) == [IssueCode.ODDS_CROSS_BOOK.value]

    @pytest.mark.asyncio
    async def test_name_matched_row_creates_fallback_baseline(self, engine, live_event, store, now) -> None:
        response = await engine.get_event_tracking("14", "PGA")
        mc = _row(response, "rec-mc")

        assert mc.player_id == "30911"
        assert mc.outcome == Outcome.WON
        assert mc.baseline_price == 3.4
        assert mc.baseline_book == "bet365"
        assert mc.baseline_captured_at == now
        assert mc.odds_movement.direction == MovementDirection.FLAT
        assert mc.probabilities is None
        assert mc.market_prob is None
        assert _codes(mc) == [
            IssueCode.MAPPING_LOW_CONFIDENCE.value,
            IssueCode.MAPPING_LOW_CONFIDENCE.value,
            IssueCode.MAPPING_LOW_CONFIDENCE.value,
            IssueCode.BASELINE_FALLBACK_CREATED.value,
        ]
        assert store.baseline_inserts == 1

    @pytest.mark.asyncio
    async def test_fallback_baseline_reused_after_cache_expiry(self, engine, live_event, store, clock) -> None:
        await engine.get_event_tracking("14", "PGA")
        clock.advance(301)
        response = await engine.get_event_tracking("14", "PGA")

        assert store.baseline_inserts == 1
        assert IssueCode.BASELINE_FALLBACK_CREATED.value not in _codes(_row(response, "rec-mc"))

    @pytest.mark.asyncio
    async def test_issues_persisted_under_daily_run(self, engine, live_event, store) -> None:
        response = await engine.get_event_tracking("14", "PGA")

        run_id = store.runs["live-tracking-2026-07-17"]
        assert all(i.run_id == run_id for i in response.issues)
        assert len(await engine.get_issues(run_id)) == len(response.issues)
        top = dict(await engine.get_top_issues(run_id))
        assert top[IssueCode.MAPPING_LOW_CONFIDENCE.value] == 3

    @pytest.mark.asyncio
    async def test_debug_details(self, engine, live_event) -> None:
        debug = (await engine.get_event_tracking("14", "PGA")).debug
        assert debug["tournament_id"] == "t-1"
        assert debug["scoring_source"] == "in_play"
        assert debug["live_event_id"] == "14"
        assert debug["markets"] == ["win", "top_10", "mc"]


# ── Degraded upstreams ──────────────────────────────────────────────────

class TestDegradedFeeds:
    @pytest.mark.asyncio
    async def test_event_mismatch_skips_live_data(self, engine, live_event, feed) -> None:
        feed.in_play = _in_play(event_id=99)

        response = await engine.get_event_tracking("14", "PGA")

        assert response.status == EventStatus.IN_PROGRESS_NO_DATA
        assert IssueCode.EVENT_MISMATCH.value in [i.step for i in response.issues]
        assert all(r.scoring is None and r.current_price is None for r in response.rows)
        assert not any(k.startswith("outrights") for k in feed.calls)
        assert _row(response, "rec-win").outcome == Outcome.PENDING

    @pytest.mark.asyncio
    async def test_odds_fetch_failure_is_contained(self, engine, live_event, feed) -> None:
        feed.outrights["win"] = RuntimeError("read timeout")

        response = await engine.get_event_tracking("14", "PGA")

        market_issue = next(i for i in response.issues if i.evidence.get("market") == "win")
        assert market_issue.step == IssueCode.ODDS_MISSING
        assert market_issue.evidence["error"] == "read timeout"
        win = _row(response, "rec-win")
        assert win.current_price is None
        assert win.odds_movement is None
        assert IssueCode.ODDS_MISSING.value in _codes(win)
        assert _row(response, "rec-t10").current_price == 2.8

    @pytest.mark.asyncio
    async def test_stats_feed_used_when_in_play_empty(self, engine, live_event, feed) -> None:
        feed.in_play = {"data": []}
        feed.live_stats = {"event_id": 14, "live_stats": _in_play()["data"]}

        response = await engine.get_event_tracking("14", "PGA")

        assert response.debug["scoring_source"] == "live_stats"
        assert _row(response, "rec-win").scoring.position == 1
        assert response.status == EventStatus.LIVE

    @pytest.mark.asyncio
    async def test_no_scoring_anywhere(self, engine, live_event, feed) -> None:
        feed.in_play = RuntimeError("503")
        feed.live_stats = {"data": []}

        response = await engine.get_event_tracking("14", "PGA")

        assert response.status == EventStatus.IN_PROGRESS_NO_DATA
        assert IssueCode.STATS_MISSING.value in [i.step for i in response.issues]
        assert _row(response, "rec-win").current_price == 6.0

    @pytest.mark.asyncio
    async def test_unreadable_scoring_rows(self, engine, live_event, feed) -> None:
        feed.in_play = {"info": {"event_id": 14}, "data": [{"country": "USA"}]}
        response = await engine.get_event_tracking("14", "PGA")
        steps = [i.step for i in response.issues]
        assert IssueCode.STATS_MISSING.value in steps
        assert IssueCode.LIVE_FEED_SHAPE_UNKNOWN.value in steps

    @pytest.mark.asyncio
    async def test_player_missing_from_field(self, engine, live_event, feed) -> None:
        payload = _in_play()
        payload["data"] = payload["data"][:2]
        feed.in_play = payload

        mc = _row(await engine.get_event_tracking("14", "PGA"), "rec-mc")

        assert mc.scoring is None
        assert IssueCode.PLAYER_NOT_FOUND_IN_LIVE_FEED.value in _codes(mc)

    @pytest.mark.asyncio
    async def test_market_and_book_coverage_issues(self, engine, live_event, feed) -> None:
        feed.outrights["top_10"] = {"odds": [{"dg_id": 22085, "player_name": "McIlroy, Rory", "pinnacle": 2.7}]}
        feed.outrights["win"] = {"odds": [{"dg_id": 18417, "player_name": "Scheffler, Scottie", "bet365": 6.0}]}
        del feed.outrights["mc"]

        response = await engine.get_event_tracking("14", "PGA")

        by_market = [(i.step, i.evidence.get("market")) for i in response.issues]
        assert (IssueCode.ODDS_BOOK_NOT_ALLOWED.value, "top_10") in by_market
        assert (IssueCode.BOOK_NOT_AVAILABLE_FROM_PROVIDER.value, "win") in by_market
        assert (IssueCode.MARKET_NOT_SUPPORTED.value, "mc") in by_market


# ── Completion ──────────────────────────────────────────────────────────

class TestCompletion:
    @pytest.mark.asyncio
    async def test_early_completion_recomputes_outcomes(self, engine, live_event, feed) -> None:
        feed.in_play = _in_play(final=True)

        response = await engine.get_event_tracking("14", "PGA")

        assert response.status == EventStatus.COMPLETED
        assert _row(response, "rec-win").outcome == Outcome.WON
        assert _row(response, "rec-t10").outcome == Outcome.LOST
        assert _row(response, "rec-mc").outcome == Outcome.WON

    @pytest.mark.asyncio
    async def test_past_end_date_is_completed(self, engine, live_event, tournament, clock) -> None:
        clock.set(tournament.end_date + timedelta(hours=1))

        response = await engine.get_event_tracking("14", "PGA")

        assert response.status == EventStatus.COMPLETED
        assert _row(response, "rec-win").outcome == Outcome.WON
        assert _row(response, "rec-t10").outcome == Outcome.LOST

    @pytest.mark.asyncio
    async def test_configured_no_cut_tour_pushes_cut_markets(self, store, feed, clock, live_event) -> None:
        settings = TrackerSettings(no_cut_tours=["PGA"])
        engine = LiveTrackingEngine(store, feed, MemoryTTLCache(clock=clock), settings, clock)

        response = await engine.get_event_tracking("14", "PGA")

        assert _row(response, "rec-mc").outcome == Outcome.PUSH
        assert _row(response, "rec-win").outcome == Outcome.PENDING


# ── Lookup / upcoming / cache ───────────────────────────────────────────

class TestLookup:
    @pytest.mark.asyncio
    async def test_unknown_event(self, engine, feed) -> None:
        response = await engine.get_event_tracking("404", "PGA")

        assert response.status == EventStatus.NOT_FOUND
        assert response.rows == []
        assert [i.step for i in response.issues] == [IssueCode.EVENT_NOT_IN_PLAY.value]
        assert sum(feed.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_running_run_is_not_tracked(self, engine, store, tournament, recs) -> None:
        store.add_tournament(tournament, recs, run_status="running")
        response = await engine.get_event_tracking("14", "PGA")
        assert response.status == EventStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_upcoming_event_has_baselines_only(self, engine, store, feed, tournament, recs, now) -> None:
        upcoming = tournament.model_copy(
            update={"start_date": now + timedelta(days=2), "end_date": now + timedelta(days=5)}
        )
        store.add_tournament(upcoming, recs)

        response = await engine.get_event_tracking("14", "PGA")

        assert response.status == EventStatus.UPCOMING
        assert response.days_until_start == 2
        assert sum(feed.calls.values()) == 0
        assert _row(response, "rec-win").baseline_price == 5.0
        assert _row(response, "rec-mc").baseline_price is None
        assert store.baselines == {}

    @pytest.mark.asyncio
    async def test_upcoming_non_finite_price_falls_back_to_stored_baseline(
        self, engine, store, tournament, recs, now
    ) -> None:
        upcoming = tournament.model_copy(
            update={"start_date": now + timedelta(days=2), "end_date": now + timedelta(days=5)}
        )
        broken = recs[0].model_copy(update={"baseline_price": float("nan")})
        store.add_tournament(upcoming, [broken, recs[2]])
        store.baselines["rec-win"] = BaselineRecord(
            recommendation_id="rec-win", price=7.5, book="bookA", captured_at=now - timedelta(hours=1)
        )

        response = await engine.get_event_tracking("14", "PGA")

        win = _row(response, "rec-win")
        assert (win.baseline_price, win.baseline_book) == (7.5, "bookA")
        assert win.baseline_captured_at == now - timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_upcoming_non_finite_price_without_stored_baseline(self, engine, store, tournament, recs, now) -> None:
        upcoming = tournament.model_copy(
            update={"start_date": now + timedelta(days=2), "end_date": now + timedelta(days=5)}
        )
        store.add_tournament(upcoming, [recs[0].model_copy(update={"baseline_price": float("inf")})])

        win = _row(await engine.get_event_tracking("14", "PGA"), "rec-win")

        assert win.baseline_price is None
        assert win.baseline_book is None

    @pytest.mark.asyncio
    async def test_duplicate_records_merged(self, engine, store, feed, tournament, recs) -> None:
        store.add_tournament(tournament, recs)
        copy = tournament.model_copy(update={"id": "t-2", "run_id": "weekly-2", "event_name": "Scottish Open"})
        dup = recs[0].model_copy(update={"id": "rec-win-b", "tournament_id": "t-2"})
        extra = recs[0].model_copy(update={"id": "rec-t20", "tournament_id": "t-2", "market_key": "top_20"})
        store.add_tournament(copy, [dup, extra])
        feed.in_play = _in_play()
        feed.outrights = dict(OUTRIGHTS)

        response = await engine.get_event_tracking("14", "PGA")

        assert response.event_name == "Genesis Scottish Open"
        assert [r.recommendation_id for r in response.rows] == ["rec-win", "rec-t10", "rec-mc", "rec-t20"]
        assert response.debug["recommendations_before_dedupe"] == 5

    @pytest.mark.asyncio
    async def test_response_cached_until_ttl(self, engine, live_event, feed, clock) -> None:
        first = await engine.get_event_tracking("14", "PGA")
        clock.advance(299)
        second = await engine.get_event_tracking("14", "pga")

        assert feed.calls["in_play"] == 1
        assert second.model_dump(mode="json") == first.model_dump(mode="json")

        clock.advance(2)
        await engine.get_event_tracking("14", "PGA")
        assert feed.calls["in_play"] == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self, engine, live_event, feed) -> None:
        await engine.get_event_tracking("14", "PGA")
        await engine.clear_cache()
        await engine.get_event_tracking("14", "PGA")
        assert feed.calls["in_play"] == 2


# ── Discovery through the engine ────────────────────────────────────────

class TestDiscoverActiveEvents:
    @pytest.mark.asyncio
    async def test_discovery_cached(self, engine, live_event, feed) -> None:
        first = await engine.discover_active_events(["PGA"])
        second = await engine.discover_active_events(["pga"])

        assert [e.status for e in first.events] == [EventStatus.LIVE]
        assert first.events[0].tracked_count == 3
        assert second.model_dump(mode="json") == first.model_dump(mode="json")
        assert feed.calls["in_play"] == 1

    @pytest.mark.asyncio
    async def test_live_only_is_separate_cache_entry(self, engine, live_event, feed) -> None:
        await engine.discover_active_events(["PGA"], include_upcoming=True)
        await engine.discover_active_events(["PGA"], include_upcoming=False)
        assert feed.calls["in_play"] == 2

    @pytest.mark.asyncio
    async def test_default_tours_from_settings(self, store, feed, clock) -> None:
        settings = TrackerSettings(default_tours=["KFT"])
        engine = LiveTrackingEngine(store, feed, MemoryTTLCache(clock=clock), settings, clock)
        result = await engine.discover_active_events()
        assert result.events == []
        assert result.issues == []
