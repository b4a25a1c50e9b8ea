"""
Live tracking engine.

For one tournament: load the published recommendations, pull live scoring
and per-market prices, join them per player, resolve price movement against
the baseline, decide whether the event is over and settle every row.

Every upstream call is guarded at its call site. A failed feed degrades the
response (fewer fields, more issues); only a tournament we have no record of
short-circuits, and even then the caller gets a structured response.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from shared.models.domain import (
    DataIssue,
    DiscoveryResult,
    EventTracking,
    OddsFeed,
    Recommendation,
    ScoringFeed,
    ScoringSnapshot,
    TrackedTournament,
    TrackingRow,
)
from shared.models.enums import EventStatus, FeedCategory, IssueCode, Outcome
from shared.utils.cache import TrackingCache, cache_key
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger
from shared.utils.metrics import TRACKING_BUILD, atrack_latency

from feeds.base import LiveFeedSource
from feeds.books import EXCHANGE_BOOK
from feeds.markets import market_probability, normalize_market_key
from feeds.normalizer import normalize_odds_feed, normalize_scoring_feed
from tracker.completion import is_tournament_complete
from tracker.config import TrackerSettings, get_tracker_settings
from tracker.discovery import EventDiscovery, days_until
from tracker.fetcher import run_with_concurrency_limit
from tracker.identity import IdentityResolver, PlayerKey, default_strategies, normalize_name
from tracker.issues import IssueCollector, IssueTracker
from tracker.ledger import RunLedger
from tracker.odds import OddsReconciler, is_finite_price
from tracker.outcome import determine_bet_outcome
from tracker.store import TrackingStore

logger = get_logger(__name__)


def dedupe_recommendations(recs: Iterable[Recommendation]) -> list[Recommendation]:
    """One recommendation per (selection, market); input order decides which survives."""
    seen: set[tuple[str, str]] = set()
    unique: list[Recommendation] = []
    for rec in recs:
        key = (normalize_name(rec.selection), normalize_market_key(rec.market_key))
        if key in seen:
            continue
        seen.add(key)
        unique.append(rec)
    return unique


def unique_markets(recs: Iterable[Recommendation]) -> list[str]:
    markets: list[str] = []
    for rec in recs:
        key = normalize_market_key(rec.market_key)
        if key and key not in markets:
            markets.append(key)
    return markets


@dataclass
class LiveContext:
    """Everything fetched for one tournament, shared by every row."""
    tour: str
    scoring: ScoringFeed = field(default_factory=ScoringFeed)
    in_play: ScoringFeed = field(default_factory=ScoringFeed)
    odds: dict[str, OddsFeed] = field(default_factory=dict)
    event_status: EventStatus = EventStatus.LIVE
    fetched_at: Optional[datetime] = None

    @property
    def field_snapshots(self) -> Optional[list[ScoringSnapshot]]:
        if not self.scoring.players:
            return None
        return [p.scoring or ScoringSnapshot() for p in self.scoring.players]


class LiveTrackingEngine:
    def __init__(
        self,
        store: TrackingStore,
        feed: LiveFeedSource,
        cache: TrackingCache,
        settings: Optional[TrackerSettings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_tracker_settings()
        self._store = store
        self._feed = feed
        self._cache = cache
        self._clock = clock
        self._issues = IssueTracker(store, clock)
        self._ledger = RunLedger(store, prefix=self._settings.run_key_prefix)
        self._discovery = EventDiscovery(store, feed, clock)
        self._resolver = IdentityResolver(default_strategies(self._settings.min_surname_length))
        self._odds = OddsReconciler(store)

    @property
    def issues(self) -> IssueTracker:
        return self._issues

    async def _collector(self, tour: Optional[str] = None) -> IssueCollector:
        run_id = await self._ledger.ensure_run(self._clock())
        return self._issues.collector(run_id, tour=tour)

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def get_issues(
        self, run_id: str, severity: Optional[str] = None, tour: Optional[str] = None
    ) -> list[DataIssue]:
        return await self._issues.get_issues(run_id, severity=severity, tour=tour)

    async def get_top_issues(self, run_id: str, limit: int = 10) -> list[tuple[str, int]]:
        return await self._issues.get_top_issues(run_id, limit=limit)

    # ── Discovery ───────────────────────────────────────────────────────
    async def discover_active_events(
        self,
        tours: Optional[Sequence[str]] = None,
        include_upcoming: bool = True,
    ) -> DiscoveryResult:
        """Tournaments with tracked recommendations that are live or (optionally) upcoming."""
        tour_list = [t.upper() for t in (tours or self._settings.default_tours)]
        key = cache_key(
            "active-events", ",".join(tour_list), "with-upcoming" if include_upcoming else "live-only"
        )
        cached = await self._cache.get(key)
        if cached is not None:
            return DiscoveryResult.model_validate(cached)

        issues = await self._collector()
        async with atrack_latency(TRACKING_BUILD, operation="discover"):
            events = await self._discovery.discover(tour_list, include_upcoming, issues)
        result = DiscoveryResult(events=events, issues=issues.issues)
        await self._cache.set(key, result.model_dump(mode="json"), ttl_s=self._settings.cache_ttl_s)
        return result

    # ── Tracking ────────────────────────────────────────────────────────
    async def get_event_tracking(self, external_event_id: str, tour: str) -> EventTracking:
        """Tracking rows and issues for one tournament; served from cache within the TTL."""
        event_id = str(external_event_id)
        tour = tour.upper()
        key = cache_key("event", tour, event_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return EventTracking.model_validate(cached)

        async with atrack_latency(TRACKING_BUILD, operation="event"):
            response = await self._build_event_tracking(event_id, tour)
        await self._cache.set(key, response.model_dump(mode="json"), ttl_s=self._settings.cache_ttl_s)
        logger.info(
            "event_tracking_built",
            tour=tour,
            event_id=event_id,
            status=response.status.value,
            rows=len(response.rows),
            issues=len(response.issues),
        )
        return response

    async def _load_tracked(
        self, event_id: str, tour: str
    ) -> tuple[Optional[TrackedTournament], list[Recommendation], dict[str, Any]]:
        """
        Merge every completed-run record of the event. The record with the most
        recommendations supplies the metadata; recommendations come from all of them.
        """
        candidates = await self._store.find_tournament_candidates(event_id, tour)
        completed = [c for c in candidates if c.run_completed]
        debug: dict[str, Any] = {"records": len(candidates), "completed_records": len(completed)}
        if not completed:
            return None, [], debug

        primary = max(completed, key=lambda c: c.recommendation_count)
        recs = await self._store.list_recommendations([c.tournament.id for c in completed])
        unique = dedupe_recommendations(recs)
        debug.update(
            tournament_id=primary.tournament.id,
            recommendations_before_dedupe=len(recs),
            recommendations=len(unique),
        )
        return primary.tournament, unique, debug

    async def _build_event_tracking(self, event_id: str, tour: str) -> EventTracking:
        now = self._clock()
        issues = await self._collector(tour)
        tournament, recs, debug = await self._load_tracked(event_id, tour)

        if tournament is None:
            await issues.warning(
                IssueCode.EVENT_NOT_IN_PLAY, "No tracked tournament found", event_id=event_id
            )
            return EventTracking(
                event_id=event_id,
                tour=tour,
                status=EventStatus.NOT_FOUND,
                updated_at=now,
                issues=issues.issues,
                debug=debug,
            )

        if tournament.start_date > now:
            rows = [await self._upcoming_row(rec) for rec in recs]
            return self._response(
                tournament, event_id, tour, EventStatus.UPCOMING, rows, issues.issues, debug, now,
                days_until_start=days_until(tournament.start_date, now),
            )

        ctx = LiveContext(
            tour=tour,
            event_status=EventStatus.COMPLETED if tournament.end_date < now else EventStatus.LIVE,
            fetched_at=now,
        )
        preds_code = self._feed.tour_code(tour, FeedCategory.PREDS)
        odds_code = self._feed.tour_code(tour, FeedCategory.ODDS)
        for category, code in ((FeedCategory.ODDS, odds_code), (FeedCategory.PREDS, preds_code)):
            if code is None:
                await issues.warning(
                    IssueCode.TOUR_NOT_SUPPORTED,
                    f"Tour not covered by the {category.value} feed",
                    category=category.value,
                )

        if preds_code is not None:
            ctx.in_play, stats = await self._fetch_scoring(preds_code, tour)
            ctx.scoring = ctx.in_play if ctx.in_play.players else stats
            debug["scoring_source"] = "in_play" if ctx.in_play.players else ("live_stats" if stats.players else None)
            live_event_id = ctx.in_play.event_id or stats.event_id
        else:
            live_event_id = None

        expected_event_id = tournament.external_event_id
        event_matches = not expected_event_id or not live_event_id or live_event_id == str(expected_event_id)
        debug.update(expected_event_id=expected_event_id, live_event_id=live_event_id)

        if not event_matches:
            await issues.warning(
                IssueCode.EVENT_MISMATCH,
                "Live feed is for a different event; skipping live scoring and odds",
                expected_event_id=expected_event_id,
                live_event_id=live_event_id,
                event_name=tournament.event_name,
            )
            ctx.scoring = ScoringFeed()
            ctx.in_play = ScoringFeed()
        else:
            if not ctx.scoring.players:
                await issues.warning(IssueCode.STATS_MISSING, "Live scoring feeds returned no rows")
                if ctx.scoring.unreadable_rows:
                    await issues.warning(
                        IssueCode.LIVE_FEED_SHAPE_UNKNOWN,
                        "Live scoring rows carry no player id or name",
                        rows=ctx.scoring.unreadable_rows,
                    )
            markets = unique_markets(recs)
            debug["markets"] = markets
            if odds_code is not None and markets:
                ctx.odds = await self._fetch_market_odds(odds_code, markets, issues)

        rows = [await self._track_recommendation(rec, ctx, issues) for rec in recs]

        complete, by_calendar = is_tournament_complete(
            tournament.end_date,
            now,
            [row.scoring for row in rows],
            tour,
            self._settings.no_cut_tour_set,
        )
        if complete and not by_calendar:
            logger.info("tournament_complete_by_scoring", tour=tour, event_id=event_id)
            for row in rows:
                row.outcome = self._settle(row.market, row.scoring, EventStatus.COMPLETED, ctx)

        has_scoring = any(
            row.scoring is not None
            and (row.scoring.position is not None or row.scoring.total_to_par is not None or row.scoring.status is not None)
            for row in rows
        )
        if complete:
            status = EventStatus.COMPLETED
        elif has_scoring:
            status = EventStatus.LIVE
        else:
            status = EventStatus.IN_PROGRESS_NO_DATA
        return self._response(tournament, event_id, tour, status, rows, issues.issues, debug, now)

    @staticmethod
    def _response(
        tournament: TrackedTournament,
        event_id: str,
        tour: str,
        status: EventStatus,
        rows: list[TrackingRow],
        issues: list[DataIssue],
        debug: dict[str, Any],
        now: datetime,
        days_until_start: Optional[int] = None,
    ) -> EventTracking:
        return EventTracking(
            event_id=tournament.external_event_id or event_id,
            tour=tour,
            event_name=tournament.event_name,
            start_date=tournament.start_date,
            end_date=tournament.end_date,
            status=status,
            days_until_start=days_until_start,
            updated_at=now,
            rows=rows,
            issues=issues,
            debug=debug,
        )

    # ── Upstream fetches ────────────────────────────────────────────────
    async def _fetch_scoring(self, code: str, tour: str) -> tuple[ScoringFeed, ScoringFeed]:
        in_play = ScoringFeed()
        stats = ScoringFeed()
        try:
            in_play = normalize_scoring_feed(await self._feed.fetch_in_play(code))
        except Exception as exc:
            logger.warning("in_play_fetch_failed", tour=tour, error=str(exc))
        try:
            stats = normalize_scoring_feed(await self._feed.fetch_live_stats(code))
        except Exception as exc:
            logger.warning("live_stats_fetch_failed", tour=tour, error=str(exc))
        return in_play, stats

    async def _fetch_market_odds(
        self, code: str, markets: Sequence[str], issues: IssueCollector
    ) -> dict[str, OddsFeed]:
        allowed = self._settings.allowed_book_keys

        async def fetch(market: str) -> tuple[str, OddsFeed]:
            try:
                payload = await self._feed.fetch_outrights(code, market)
            except Exception as exc:
                logger.error("odds_fetch_failed", market=market, tour_code=code, error=str(exc))
                await issues.warning(IssueCode.ODDS_MISSING, "Failed to fetch live odds", market=market, error=str(exc))
                return market, OddsFeed(market=market)

            if payload is None:
                await issues.warning(IssueCode.MARKET_NOT_SUPPORTED, "Feed returned no payload for market", market=market)
                return market, OddsFeed(market=market)

            odds = normalize_odds_feed(payload, market, allowed)
            if odds.row_count and not odds.offers:
                await issues.warning(
                    IssueCode.ODDS_BOOK_NOT_ALLOWED,
                    "Odds rows present but no allowed bookmaker remained",
                    market=market,
                    books_seen=sorted(odds.books_seen),
                )
            elif odds.offers and EXCHANGE_BOOK not in odds.books_seen:
                await issues.info(
                    IssueCode.BOOK_NOT_AVAILABLE_FROM_PROVIDER,
                    f"{EXCHANGE_BOOK} missing from live odds",
                    market=market,
                )
            return market, odds

        results = await run_with_concurrency_limit(markets, self._settings.max_concurrency, fetch)
        return dict(results)

    # ── Rows ────────────────────────────────────────────────────────────
    def _settle(
        self,
        market: str,
        scoring: Optional[ScoringSnapshot],
        event_status: EventStatus,
        ctx: LiveContext,
    ) -> Optional[Outcome]:
        return determine_bet_outcome(
            market,
            scoring,
            event_status,
            ctx.tour,
            field=ctx.field_snapshots,
            no_cut_tours=self._settings.no_cut_tour_set,
        )

    async def _upcoming_row(self, rec: Recommendation) -> TrackingRow:
        price, book, captured_at = rec.baseline_price, rec.baseline_book, rec.created_at
        if not is_finite_price(price):
            price, book, captured_at = None, None, None
            stored = await self._store.get_baseline(rec.id)
            if stored is not None:
                price, book, captured_at = stored.price, stored.book, stored.captured_at
        return TrackingRow(
            recommendation_id=rec.id,
            player_id=rec.external_player_id,
            player_name=rec.selection,
            market=rec.market_key,
            tier=rec.tier,
            confidence=rec.confidence,
            edge=rec.edge,
            ev=rec.ev,
            baseline_price=price,
            baseline_book=book,
            baseline_captured_at=captured_at,
        )

    async def _track_recommendation(
        self, rec: Recommendation, ctx: LiveContext, issues: IssueCollector
    ) -> TrackingRow:
        first_issue = len(issues.issues)
        key = PlayerKey(player_id=rec.external_player_id, name=rec.selection)
        evidence = {"recommendation_id": rec.id, "selection": rec.selection}

        if not rec.external_player_id:
            await issues.warning(
                IssueCode.MAPPING_LOW_CONFIDENCE, "Recommendation has no external player id", **evidence
            )

        scoring_match = self._resolver.resolve_one(key, ctx.scoring.players)
        if scoring_match.low_confidence:
            await issues.warning(
                IssueCode.MAPPING_LOW_CONFIDENCE,
                f"Matched live scoring by {scoring_match.method.value}",
                method=scoring_match.method.value,
                matched_name=scoring_match.first.player_name,
                **evidence,
            )
        player = scoring_match.first
        scoring = player.scoring if player else None
        if ctx.scoring.players and player is None:
            await issues.info(
                IssueCode.PLAYER_NOT_FOUND_IN_LIVE_FEED, "Player missing from live feed", **evidence
            )
        elif player is not None and scoring is None:
            await issues.warning(
                IssueCode.LIVE_FEED_SHAPE_UNKNOWN, "Live feed row has no scoring fields", **evidence
            )

        # in-play rows carry probabilities; stats rows do not
        prob_player = self._resolver.resolve_one(key, ctx.in_play.players).first or player
        probabilities = prob_player.probabilities if prob_player else None
        market_prob, market_prob_label = market_probability(rec.market_key, probabilities)

        market_odds = ctx.odds.get(normalize_market_key(rec.market_key))
        offer_match = self._resolver.resolve_all(key, market_odds.offers if market_odds else [])
        if offer_match.low_confidence:
            await issues.warning(
                IssueCode.MAPPING_LOW_CONFIDENCE,
                f"Matched live odds by {offer_match.method.value}",
                method=offer_match.method.value,
                matched_name=offer_match.first.player_name,
                market=rec.market_key,
                **evidence,
            )
        resolution = await self._odds.reconcile(rec, offer_match.items, issues, ctx.fetched_at or self._clock())

        return TrackingRow(
            recommendation_id=rec.id,
            player_id=rec.external_player_id or (player.player_id if player else None),
            player_name=rec.selection,
            market=rec.market_key,
            tier=rec.tier,
            confidence=rec.confidence,
            edge=rec.edge,
            ev=rec.ev,
            scoring=scoring,
            baseline_price=resolution.baseline_price,
            baseline_book=resolution.baseline_book,
            baseline_captured_at=resolution.baseline_captured_at,
            current_price=resolution.current.price if resolution.current else None,
            current_book=resolution.current.book if resolution.current else None,
            current_fetched_at=ctx.fetched_at if resolution.current else None,
            odds_movement=resolution.movement,
            probabilities=probabilities,
            market_prob=market_prob,
            market_prob_label=market_prob_label,
            outcome=self._settle(rec.market_key, scoring, ctx.event_status, ctx),
            data_issues=issues.codes()[first_issue:],
        )
