"""Internal tour codes to feed tour codes, per feed category."""
from __future__ import annotations

from typing import Optional

from shared.models.enums import FeedCategory

TOUR_CODES: dict[str, dict[FeedCategory, str]] = {
    "PGA": {FeedCategory.PREDS: "pga", FeedCategory.ODDS: "pga"},
    "DPWT": {FeedCategory.PREDS: "euro", FeedCategory.ODDS: "euro"},
    "KFT": {FeedCategory.PREDS: "kft", FeedCategory.ODDS: "kft"},
    "LIV": {FeedCategory.PREDS: "alt", FeedCategory.ODDS: "alt"},
}

# tours the outrights endpoint accepts
ODDS_SUPPORTED = frozenset({"pga", "euro", "kft", "opp", "alt"})


def feed_tour_code(tour: str, category: FeedCategory) -> Optional[str]:
    code = TOUR_CODES.get((tour or "").upper(), {}).get(category)
    if category == FeedCategory.ODDS and code not in ODDS_SUPPORTED:
        return None
    return code
