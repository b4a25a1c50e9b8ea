"""
Pydantic v2 domain models for the tracker.
These are the canonical internal / response representations, NOT ORM models.
Feed payloads are converted into these shapes once, in feeds.normalizer.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import (
    EventStatus,
    IssueCode,
    MovementDirection,
    Outcome,
    PlayerStatus,
    Severity,
)
from shared.utils.clock import utc_now


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Read-only inputs ────────────────────────────────────────────────────
class TrackedTournament(DomainModel):
    """A tournament produced by the upstream discovery pipeline."""
    id: str
    run_id: str
    tour: str
    external_event_id: Optional[str] = None
    event_name: str
    start_date: datetime
    end_date: datetime
    created_at: Optional[datetime] = None


class Recommendation(DomainModel):
    """A published pick. Baseline fields are the publish-time capture and may be missing."""
    id: str
    run_id: str
    tournament_id: str
    tier: str
    market_key: str
    selection: str
    external_player_id: Optional[str] = None
    confidence: Optional[int] = None
    edge: Optional[float] = None
    ev: Optional[float] = None
    baseline_book: Optional[str] = None
    baseline_price: Optional[float] = None
    created_at: Optional[datetime] = None


class BaselineRecord(DomainModel):
    recommendation_id: str
    price: float
    book: Optional[str] = None
    captured_at: datetime


class DataIssue(DomainModel):
    run_id: Optional[str] = None
    tour: Optional[str] = None
    severity: Severity
    step: Union[IssueCode, str]
    message: str
    evidence: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


# ── Canonical feed records ──────────────────────────────────────────────
class ScoringSnapshot(DomainModel):
    """A player's live scoring state. Every field is optional; feeds omit freely."""
    position: Optional[int] = None
    status: Optional[PlayerStatus] = None
    total_to_par: Optional[float] = None
    today_to_par: Optional[float] = None
    thru: Optional[Union[int, str]] = None
    r1: Optional[float] = None
    r2: Optional[float] = None
    r3: Optional[float] = None
    r4: Optional[float] = None
    current_round: Optional[int] = None

    @property
    def has_progress(self) -> bool:
        return self.current_round is not None and self.thru is not None


class Probabilities(DomainModel):
    win: Optional[float] = None
    top_5: Optional[float] = None
    top_10: Optional[float] = None
    top_20: Optional[float] = None
    make_cut: Optional[float] = None


class FeedPlayer(DomainModel):
    """One player row from a scoring / probability feed."""
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    scoring: Optional[ScoringSnapshot] = None
    probabilities: Optional[Probabilities] = None


class ScoringFeed(DomainModel):
    event_id: Optional[str] = None
    event_name: Optional[str] = None
    players: list[FeedPlayer] = Field(default_factory=list)
    # raw rows that carried neither a player id nor a name
    unreadable_rows: int = 0


class OddsOffer(DomainModel):
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    book: str
    price: float


class OddsFeed(DomainModel):
    market: str
    event_id: Optional[str] = None
    row_count: int = 0
    offers: list[OddsOffer] = Field(default_factory=list)
    books_seen: set[str] = Field(default_factory=set)


# ── Tracking output ─────────────────────────────────────────────────────
class OddsMovement(DomainModel):
    direction: MovementDirection
    delta_decimal: float
    pct_change: Optional[float] = None
    cross_book: bool = False


class TrackingRow(DomainModel):
    """Per-recommendation view rebuilt on every request. Never persisted."""
    recommendation_id: str
    player_id: Optional[str] = None
    player_name: str
    market: str
    tier: Optional[str] = None
    confidence: Optional[int] = None
    edge: Optional[float] = None
    ev: Optional[float] = None
    scoring: Optional[ScoringSnapshot] = None
    baseline_price: Optional[float] = None
    baseline_book: Optional[str] = None
    baseline_captured_at: Optional[datetime] = None
    current_price: Optional[float] = None
    current_book: Optional[str] = None
    current_fetched_at: Optional[datetime] = None
    odds_movement: Optional[OddsMovement] = None
    probabilities: Optional[Probabilities] = None
    market_prob: Optional[float] = None
    market_prob_label: Optional[str] = None
    outcome: Optional[Outcome] = None
    data_issues: list[str] = Field(default_factory=list)


class EventTracking(DomainModel):
    """Response for one tournament."""
    event_id: str
    tour: str
    event_name: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: EventStatus
    days_until_start: Optional[int] = None
    updated_at: datetime = Field(default_factory=utc_now)
    rows: list[TrackingRow] = Field(default_factory=list)
    issues: list[DataIssue] = Field(default_factory=list)
    debug: dict[str, Any] = Field(default_factory=dict)


class DiscoveredEvent(DomainModel):
    tournament_id: str
    external_event_id: Optional[str] = None
    tour: str
    event_name: str
    start_date: datetime
    end_date: datetime
    status: EventStatus
    days_until_start: Optional[int] = None
    tracked_count: int = 0


class DiscoveryResult(DomainModel):
    events: list[DiscoveredEvent] = Field(default_factory=list)
    issues: list[DataIssue] = Field(default_factory=list)
