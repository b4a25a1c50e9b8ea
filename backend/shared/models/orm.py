"""
SQLAlchemy 2.0 ORM models for the tracker.

Column types are dialect-neutral (string ids, generic JSON) so the same
metadata runs on Postgres in deployment and SQLite in tests.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class RunORM(Base):
    """Publishing runs (upstream) and daily tracking ledger runs (ours)."""
    __tablename__ = "runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    run_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    week_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    week_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    tour_events: Mapped[list["TourEventORM"]] = relationship(back_populates="run")


class TourEventORM(Base):
    __tablename__ = "tour_events"
    __table_args__ = (Index("ix_tour_events_tour_dg_event", "tour", "dg_event_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    run_id: Mapped[str] = mapped_column(String(36), ForeignKey("runs.id"), nullable=False)
    tour: Mapped[str] = mapped_column(String(10), nullable=False)
    event_name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dg_event_id: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    run: Mapped["RunORM"] = relationship(back_populates="tour_events")
    recommendations: Mapped[list["BetRecommendationORM"]] = relationship(back_populates="tour_event")


class BetRecommendationORM(Base):
    __tablename__ = "bet_recommendations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    run_id: Mapped[str] = mapped_column(String(36), ForeignKey("runs.id"), nullable=False)
    tour_event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tour_events.id"), nullable=False, index=True
    )
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    market_key: Mapped[str] = mapped_column(String(30), nullable=False)
    selection: Mapped[str] = mapped_column(String(200), nullable=False)
    dg_player_id: Mapped[Optional[str]] = mapped_column(String(50))
    confidence_1_to_5: Mapped[Optional[int]] = mapped_column(Integer)
    edge: Mapped[Optional[float]] = mapped_column(Float)
    ev: Mapped[Optional[float]] = mapped_column(Float)
    best_bookmaker: Mapped[Optional[str]] = mapped_column(String(50))
    best_odds: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    tour_event: Mapped["TourEventORM"] = relationship(back_populates="recommendations")
    override: Mapped[Optional["BetOverrideORM"]] = relationship(back_populates="recommendation")


class BetOverrideORM(Base):
    __tablename__ = "bet_overrides"

    bet_recommendation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bet_recommendations.id"), primary_key=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    note: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    recommendation: Mapped["BetRecommendationORM"] = relationship(back_populates="override")


class LiveTrackingBaselineORM(Base):
    """Fallback baseline price; the unique recommendation id is the idempotency key."""
    __tablename__ = "live_tracking_baselines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bet_recommendation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bet_recommendations.id"), unique=True, nullable=False
    )
    baseline_odds_decimal: Mapped[float] = mapped_column(Float, nullable=False)
    baseline_book: Mapped[Optional[str]] = mapped_column(String(50))
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DataIssueORM(Base):
    __tablename__ = "data_issues"
    __table_args__ = (Index("ix_data_issues_run_severity", "run_id", "severity"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    run_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("runs.id"))
    tour: Mapped[Optional[str]] = mapped_column(String(10))
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    step: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
