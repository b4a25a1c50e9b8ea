"""
Persistence for tracking: tournaments and recommendations (read-only),
fallback baselines, the daily run ledger and data issues.

Writes that must happen at most once (the per-day run, the per-recommendation
baseline) are INSERT ... ON CONFLICT DO NOTHING on a unique key followed by a
read, so concurrent writers converge on one row instead of erroring.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from shared.models.domain import BaselineRecord, DataIssue, Recommendation, TrackedTournament
from shared.models.enums import OverrideStatus, RunStatus
from shared.models.orm import (
    BetOverrideORM,
    BetRecommendationORM,
    DataIssueORM,
    LiveTrackingBaselineORM,
    RunORM,
    TourEventORM,
)
from shared.utils.clock import as_utc
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TournamentCandidate:
    """One stored record for an external event, with what merging needs to know."""
    tournament: TrackedTournament
    run_status: str
    recommendation_count: int

    @property
    def run_completed(self) -> bool:
        return self.run_status == RunStatus.COMPLETED.value


def _tournament(row: TourEventORM) -> TrackedTournament:
    return TrackedTournament(
        id=row.id,
        run_id=row.run_id,
        tour=row.tour,
        external_event_id=row.dg_event_id,
        event_name=row.event_name,
        start_date=as_utc(row.start_date),
        end_date=as_utc(row.end_date),
        created_at=as_utc(row.created_at),
    )


def _recommendation(row: BetRecommendationORM) -> Recommendation:
    return Recommendation(
        id=row.id,
        run_id=row.run_id,
        tournament_id=row.tour_event_id,
        tier=row.tier,
        market_key=row.market_key,
        selection=row.selection,
        external_player_id=row.dg_player_id,
        confidence=row.confidence_1_to_5,
        edge=row.edge,
        ev=row.ev,
        baseline_book=row.best_bookmaker,
        baseline_price=row.best_odds,
        created_at=as_utc(row.created_at),
    )


def _baseline(row: LiveTrackingBaselineORM) -> BaselineRecord:
    return BaselineRecord(
        recommendation_id=row.bet_recommendation_id,
        price=row.baseline_odds_decimal,
        book=row.baseline_book,
        captured_at=as_utc(row.captured_at),
    )


def _issue(row: DataIssueORM) -> DataIssue:
    return DataIssue(
        run_id=row.run_id,
        tour=row.tour,
        severity=row.severity,
        step=row.step,
        message=row.message,
        evidence=row.evidence_json or {},
        created_at=as_utc(row.created_at),
    )


class TrackingStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _insert(self, model: Any) -> Any:
        if self._db.dialect == "postgresql":
            return pg_insert(model)
        if self._db.dialect == "sqlite":
            return sqlite_insert(model)
        raise RuntimeError(f"Unsupported dialect for upserts: {self._db.dialect}")

    # ── Run ledger ──────────────────────────────────────────────────────
    async def ensure_run(self, run_key: str, window_start: datetime, window_end: datetime) -> str:
        """Id of the run with `run_key`, creating it in status running if absent."""
        stmt = (
            self._insert(RunORM)
            .values(
                id=str(uuid.uuid4()),
                run_key=run_key,
                week_start=window_start,
                week_end=window_end,
                status=RunStatus.RUNNING.value,
            )
            .on_conflict_do_nothing(index_elements=["run_key"])
        )
        async with self._db.write_session() as session:
            await session.execute(stmt)
            run_id = await session.scalar(select(RunORM.id).where(RunORM.run_key == run_key))
        return run_id

    # ── Tournaments ─────────────────────────────────────────────────────
    def _completed_counts(self) -> Any:
        return (
            select(
                BetRecommendationORM.tour_event_id.label("tour_event_id"),
                func.count(BetRecommendationORM.id).label("tracked"),
            )
            .join(RunORM, RunORM.id == BetRecommendationORM.run_id)
            .where(RunORM.status == RunStatus.COMPLETED.value)
            .group_by(BetRecommendationORM.tour_event_id)
            .subquery()
        )

    async def list_trackable_tournaments(
        self, tours: Iterable[str], now: datetime
    ) -> list[tuple[TrackedTournament, int]]:
        """Unfinished tournaments on `tours` with at least one recommendation from a completed run."""
        counts = self._completed_counts()
        stmt = (
            select(TourEventORM, counts.c.tracked)
            .join(counts, counts.c.tour_event_id == TourEventORM.id)
            .where(
                TourEventORM.tour.in_(list(tours)),
                TourEventORM.end_date >= now,
                counts.c.tracked > 0,
            )
            .order_by(TourEventORM.start_date.asc())
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).all()
        return [(_tournament(event), int(tracked)) for event, tracked in rows]

    async def find_tournament_candidates(self, external_event_id: str, tour: str) -> list[TournamentCandidate]:
        """
        Every record of the event on `tour`, newest first. Falls back to treating
        `external_event_id` as our own primary key.
        """
        base = select(TourEventORM, RunORM.status).join(RunORM, RunORM.id == TourEventORM.run_id)
        async with self._db.read_session() as session:
            rows = (
                await session.execute(
                    base.where(
                        TourEventORM.tour == tour,
                        TourEventORM.dg_event_id == str(external_event_id),
                    ).order_by(TourEventORM.created_at.desc())
                )
            ).all()
            if not rows:
                rows = (await session.execute(base.where(TourEventORM.id == str(external_event_id)))).all()
            if not rows:
                return []

            ids = [event.id for event, _ in rows]
            counts = dict(
                (
                    await session.execute(
                        select(BetRecommendationORM.tour_event_id, func.count(BetRecommendationORM.id))
                        .where(BetRecommendationORM.tour_event_id.in_(ids))
                        .group_by(BetRecommendationORM.tour_event_id)
                    )
                ).all()
            )
        return [
            TournamentCandidate(
                tournament=_tournament(event),
                run_status=status,
                recommendation_count=int(counts.get(event.id, 0)),
            )
            for event, status in rows
        ]

    # ── Recommendations ─────────────────────────────────────────────────
    async def list_recommendations(self, tournament_ids: Sequence[str]) -> list[Recommendation]:
        """
        Recommendations from completed runs for the given tournaments, archived
        ones excluded, strongest first (tier, confidence, edge, newest).
        """
        if not tournament_ids:
            return []
        stmt = (
            select(BetRecommendationORM)
            .join(RunORM, RunORM.id == BetRecommendationORM.run_id)
            .outerjoin(BetOverrideORM, BetOverrideORM.bet_recommendation_id == BetRecommendationORM.id)
            .where(
                BetRecommendationORM.tour_event_id.in_(list(tournament_ids)),
                RunORM.status == RunStatus.COMPLETED.value,
                or_(BetOverrideORM.status.is_(None), BetOverrideORM.status != OverrideStatus.ARCHIVED.value),
            )
            .order_by(
                BetRecommendationORM.tier.asc(),
                BetRecommendationORM.confidence_1_to_5.desc().nulls_last(),
                BetRecommendationORM.edge.desc().nulls_last(),
                BetRecommendationORM.created_at.desc(),
            )
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_recommendation(r) for r in rows]

    # ── Baselines ───────────────────────────────────────────────────────
    async def get_baseline(self, recommendation_id: str) -> Optional[BaselineRecord]:
        async with self._db.read_session() as session:
            row = await session.scalar(
                select(LiveTrackingBaselineORM).where(
                    LiveTrackingBaselineORM.bet_recommendation_id == recommendation_id
                )
            )
        return _baseline(row) if row else None

    async def create_baseline_if_absent(
        self,
        recommendation_id: str,
        price: float,
        book: Optional[str],
        captured_at: datetime,
    ) -> tuple[BaselineRecord, bool]:
        """
        Persist the baseline unless one exists. Returns (stored record, created).
        A conflicting concurrent insert yields the record the other writer stored.
        """
        stmt = (
            self._insert(LiveTrackingBaselineORM)
            .values(
                id=str(uuid.uuid4()),
                bet_recommendation_id=recommendation_id,
                baseline_odds_decimal=price,
                baseline_book=book,
                captured_at=captured_at,
            )
            .on_conflict_do_nothing(index_elements=["bet_recommendation_id"])
        )
        async with self._db.write_session() as session:
            result = await session.execute(stmt)
            row = await session.scalar(
                select(LiveTrackingBaselineORM).where(
                    LiveTrackingBaselineORM.bet_recommendation_id == recommendation_id
                )
            )
        return _baseline(row), result.rowcount == 1

    # ── Data issues ─────────────────────────────────────────────────────
    async def add_issue(self, issue: DataIssue) -> None:
        async with self._db.write_session() as session:
            session.add(
                DataIssueORM(
                    id=str(uuid.uuid4()),
                    run_id=issue.run_id,
                    tour=issue.tour,
                    severity=issue.severity.value,
                    step=str(getattr(issue.step, "value", issue.step)),
                    message=issue.message,
                    evidence_json=issue.evidence,
                    created_at=issue.created_at,
                )
            )

    async def list_issues(
        self,
        run_id: str,
        severity: Optional[str] = None,
        tour: Optional[str] = None,
        limit: int = 500,
    ) -> list[DataIssue]:
        stmt = select(DataIssueORM).where(DataIssueORM.run_id == run_id)
        if severity:
            stmt = stmt.where(DataIssueORM.severity == severity)
        if tour:
            stmt = stmt.where(DataIssueORM.tour == tour)
        stmt = stmt.order_by(DataIssueORM.created_at.desc()).limit(limit)
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_issue(r) for r in rows]

    async def top_issues(self, run_id: str, limit: int = 10) -> list[tuple[str, int]]:
        """(step, count) for the most frequent steps in a run."""
        total = func.count(DataIssueORM.id).label("total")
        stmt = (
            select(DataIssueORM.step, total)
            .where(DataIssueORM.run_id == run_id)
            .group_by(DataIssueORM.step)
            .order_by(total.desc(), DataIssueORM.step.asc())
            .limit(limit)
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).all()
        return [(step, int(count)) for step, count in rows]
