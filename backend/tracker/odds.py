"""
Odds reconciliation: current price selection, movement versus the baseline,
and the lazily created fallback baseline.

Movement is only a realizable comparison when the current price comes from
the baseline's bookmaker. Any other book is a cross-book fallback and is
flagged as such.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence

from shared.models.domain import BaselineRecord, OddsMovement, OddsOffer, Recommendation
from shared.models.enums import IssueCode, MovementDirection
from shared.utils.logging import get_logger
from shared.utils.metrics import BASELINES_CREATED

from feeds.books import normalize_book_key
from tracker.issues import IssueCollector

logger = get_logger(__name__)


def is_finite_price(value: Optional[float]) -> bool:
    return value is not None and isinstance(value, (int, float)) and math.isfinite(value)


def select_same_book_offer(offers: Sequence[OddsOffer], baseline_book: Optional[str]) -> Optional[OddsOffer]:
    target = normalize_book_key(baseline_book)
    if not target:
        return None
    for offer in offers:
        if normalize_book_key(offer.book) == target:
            return offer
    return None


def select_best_available_offer(offers: Sequence[OddsOffer]) -> Optional[OddsOffer]:
    """Shortest price on the board (lowest decimal odds)."""
    priced = [o for o in offers if is_finite_price(o.price)]
    if not priced:
        return None
    return min(priced, key=lambda o: o.price)


def compute_odds_movement(
    baseline: Optional[float], current: Optional[float], cross_book: bool = False
) -> Optional[OddsMovement]:
    if not is_finite_price(baseline) or not is_finite_price(current):
        return None
    if current > baseline:
        direction = MovementDirection.UP
    elif current < baseline:
        direction = MovementDirection.DOWN
    else:
        direction = MovementDirection.FLAT
    return OddsMovement(
        direction=direction,
        delta_decimal=current - baseline,
        pct_change=None if baseline == 0 else (current - baseline) / baseline,
        cross_book=cross_book,
    )


class BaselineStore(Protocol):
    async def get_baseline(self, recommendation_id: str) -> Optional[BaselineRecord]: ...

    async def create_baseline_if_absent(
        self, recommendation_id: str, price: float, book: Optional[str], captured_at: datetime
    ) -> tuple[BaselineRecord, bool]: ...


@dataclass
class OddsResolution:
    current: Optional[OddsOffer] = None
    cross_book: bool = False
    baseline_price: Optional[float] = None
    baseline_book: Optional[str] = None
    baseline_captured_at: Optional[datetime] = None
    movement: Optional[OddsMovement] = None


class OddsReconciler:
    def __init__(self, store: BaselineStore) -> None:
        self._store = store

    async def _resolve_baseline(
        self, rec: Recommendation, resolution: OddsResolution
    ) -> None:
        if is_finite_price(rec.baseline_price):
            resolution.baseline_price = rec.baseline_price
            resolution.baseline_book = rec.baseline_book
            resolution.baseline_captured_at = rec.created_at
            return
        stored = await self._store.get_baseline(rec.id)
        if stored is not None:
            self._apply_baseline(stored, resolution)

    @staticmethod
    def _apply_baseline(record: BaselineRecord, resolution: OddsResolution) -> None:
        resolution.baseline_price = record.price
        resolution.baseline_book = record.book
        resolution.baseline_captured_at = record.captured_at

    async def reconcile(
        self,
        rec: Recommendation,
        offers: Sequence[OddsOffer],
        issues: IssueCollector,
        observed_at: datetime,
    ) -> OddsResolution:
        """
        Resolve the current price and movement for one recommendation.

        Args:
            rec: The recommendation being tracked.
            offers: Allow-listed offers already matched to this player.
            issues: Collector for the response being built.
            observed_at: When the offers were fetched; stamps a created baseline.
        """
        resolution = OddsResolution()
        evidence = {"recommendation_id": rec.id, "selection": rec.selection, "market": rec.market_key}

        await self._resolve_baseline(rec, resolution)

        same = select_same_book_offer(offers, resolution.baseline_book)
        best = same or select_best_available_offer(offers)

        if resolution.baseline_price is None and best is not None:
            record, created = await self._store.create_baseline_if_absent(
                rec.id, best.price, best.book, observed_at
            )
            self._apply_baseline(record, resolution)
            if created:
                BASELINES_CREATED.inc()
                await issues.info(
                    IssueCode.BASELINE_FALLBACK_CREATED,
                    "Baseline missing at publish time; stored first live price",
                    price=record.price,
                    book=record.book,
                    **evidence,
                )
            same = select_same_book_offer(offers, resolution.baseline_book)
            best = same or best

        resolution.current = best
        resolution.cross_book = best is not None and same is None

        if best is None:
            await issues.warning(
                IssueCode.ODDS_MISSING, "No live price for player from allowed books", **evidence
            )
        elif resolution.cross_book:
            await issues.info(
                IssueCode.ODDS_CROSS_BOOK,
                "Same-book price unavailable; using shortest price from another book",
                baseline_book=resolution.baseline_book,
                fallback_book=best.book,
                **evidence,
            )

        if resolution.baseline_price is None:
            await issues.error(
                IssueCode.BASELINE_MISSING, "No baseline price could be resolved", **evidence
            )
        elif best is not None:
            resolution.movement = compute_odds_movement(
                resolution.baseline_price, best.price, cross_book=resolution.cross_book
            )
        return resolution
