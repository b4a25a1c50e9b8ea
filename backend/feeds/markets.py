"""Market key helpers shared by odds fetching, probabilities and settlement."""
from __future__ import annotations

import re
from typing import Optional

from shared.models.domain import Probabilities

_TOP_N = re.compile(r"^top_?(\d+)$")

WIN = "win"
MISS_CUT = "mc"
MAKE_CUT = "make_cut"
FIRST_ROUND_LEADER = "frl"
CUT_MARKETS = frozenset({MISS_CUT, MAKE_CUT})


def normalize_market_key(market: Optional[str]) -> str:
    return (market or "").strip().lower()


def parse_top_n(market: Optional[str]) -> Optional[int]:
    """'top_10' / 'top10' -> 10."""
    match = _TOP_N.match(normalize_market_key(market))
    if not match:
        return None
    n = int(match.group(1))
    return n if n > 0 else None


def market_probability(market: Optional[str], probs: Optional[Probabilities]) -> tuple[Optional[float], Optional[str]]:
    """Model probability relevant to the market, with a display label."""
    if probs is None:
        return None, None
    key = normalize_market_key(market)
    if key == WIN:
        return probs.win, "Win"
    if key == MAKE_CUT:
        return probs.make_cut, "Make Cut"
    if key == MISS_CUT:
        if probs.make_cut is None:
            return None, "Miss Cut"
        return 1.0 - probs.make_cut, "Miss Cut"
    n = parse_top_n(key)
    if n in (5, 10, 20):
        return getattr(probs, f"top_{n}"), f"Top {n}"
    return None, None
