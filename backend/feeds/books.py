"""
Bookmaker key normalization and the allow-list filter.

Feeds spell bookmakers inconsistently ("DraftKings", "dk", "draft_kings").
Everything downstream compares normalized keys only.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

BOOK_ALIASES: dict[str, str] = {
    "dk": "draftkings",
    "draft_kings": "draftkings",
    "fd": "fanduel",
    "fan_duel": "fanduel",
    "mgm": "betmgm",
    "bet_mgm": "betmgm",
    "caesars_sportsbook": "caesars",
    "bet_365": "bet365",
    "william_hill": "williamhill",
    "points_bet": "pointsbet",
    "barstool_sportsbook": "barstool",
    "bet_rivers": "betrivers",
    "bet_fair": "betfair",
    "betfair_exchange": "betfair",
    "sky_bet": "skybet",
    "paddy_power": "paddypower",
    "bet_way": "betway",
    "boyle_sports": "boylesports",
    "bet_fred": "betfred",
}

DEFAULT_ALLOWED_BOOKS: tuple[str, ...] = (
    "bet365",
    "betfair",
    "williamhill",
    "skybet",
    "unibet",
    "paddypower",
    "betway",
    "ladbrokes",
    "coral",
    "betfred",
    "boylesports",
    "fanduel",
    "draftkings",
    "betmgm",
    "caesars",
    "pointsbet",
)

EXCHANGE_BOOK = "betfair"

_WS = re.compile(r"\s+")


def normalize_book_key(book: Optional[str]) -> Optional[str]:
    """Trim, lowercase, underscores for whitespace, then resolve aliases."""
    if book is None:
        return None
    key = _WS.sub("_", str(book).strip().lower())
    if not key:
        return None
    return BOOK_ALIASES.get(key, key)


def normalize_allow_list(books: Iterable[str]) -> frozenset[str]:
    keys = (normalize_book_key(b) for b in books)
    return frozenset(k for k in keys if k)


def is_allowed(book: Optional[str], allowed: frozenset[str]) -> bool:
    key = normalize_book_key(book)
    return key is not None and key in allowed
