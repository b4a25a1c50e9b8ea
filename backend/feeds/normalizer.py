"""
Feed normalization: raw upstream payloads -> canonical domain records.

Upstream field names drift between endpoints and over time. Every alias we
know of is resolved here, once, so the tracker only ever reads
ScoringSnapshot / Probabilities / OddsOffer.
"""
from __future__ import annotations

import math
import re
from typing import Any, Iterable, Optional

from shared.models.domain import FeedPlayer, OddsFeed, OddsOffer, Probabilities, ScoringFeed, ScoringSnapshot
from shared.models.enums import PlayerStatus

from feeds.books import is_allowed, normalize_book_key
from feeds.odds_format import to_decimal

# ── Field aliases ───────────────────────────────────────────────────────
PLAYER_ID_KEYS = ("dg_id", "player_id", "id")
PLAYER_NAME_KEYS = ("player_name", "player", "name", "golfer", "playerName")

POSITION_KEYS = ("current_pos", "position", "pos", "rank", "place", "leaderboard_position")
TOTAL_KEYS = ("current_score", "total_to_par", "to_par", "score", "total_score", "total")
TODAY_KEYS = ("today", "today_to_par", "round_score")
THRU_KEYS = ("thru", "through", "hole", "current_hole", "thru_hole")
CURRENT_ROUND_KEYS = ("current_round", "round", "round_number", "roundNumber")
ROUND_KEYS = {n: (f"R{n}", f"r{n}", f"round_{n}", f"round{n}") for n in (1, 2, 3, 4)}

PROBABILITY_KEYS = {
    "win": ("win_prob", "win"),
    "top_5": ("top_5_prob", "top5_prob", "top_5", "top5"),
    "top_10": ("top_10_prob", "top10_prob", "top_10", "top10"),
    "top_20": ("top_20_prob", "top20_prob", "top_20", "top20"),
    "make_cut": ("make_cut_prob", "make_cut", "makecut"),
}

STATUS_ALIASES: dict[str, PlayerStatus] = {
    "MC": PlayerStatus.MISSED_CUT,
    "CUT": PlayerStatus.MISSED_CUT,
    "MISSED CUT": PlayerStatus.MISSED_CUT,
    "WD": PlayerStatus.WITHDRAWN,
    "W/D": PlayerStatus.WITHDRAWN,
    "WITHDRAWN": PlayerStatus.WITHDRAWN,
    "DQ": PlayerStatus.DISQUALIFIED,
    "DISQUALIFIED": PlayerStatus.DISQUALIFIED,
}

ROW_CONTAINER_KEYS = ("data", "rows", "players", "odds", "offers", "live_stats", "predictions", "baseline")

# row keys that are never bookmakers when a row embeds book -> price pairs
NON_BOOK_KEYS = frozenset(
    {
        *PLAYER_ID_KEYS,
        *PLAYER_NAME_KEYS,
        "datagolf",
        "dg",
        "baseline",
        "baseline_history_fit",
        "country",
        "am",
        "event_id",
        "event_name",
        "market",
        "last_updated",
        "odds_format",
    }
)
BOOK_CONTAINER_KEYS = ("books", "offers", "bookmakers", "prices", "odds")
ROW_BOOK_KEYS = ("book", "bookmaker", "sportsbook")
BOOK_NAME_KEYS = ("book", "bookmaker", "sportsbook", "key", "name")
BOOK_PRICE_KEYS = ("odds", "price", "decimal", "odds_decimal", "value")

_LEADING_T = re.compile(r"^T(?=\d)", re.IGNORECASE)


# ── Primitive coercion ──────────────────────────────────────────────────
def _first(row: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = str(value).strip()
    if text.upper() == "E":
        return 0.0
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_position(value: Any) -> tuple[Optional[int], Optional[PlayerStatus]]:
    """'T10' -> (10, None); 'MC' -> (None, MC); 7 -> (7, None)."""
    if value is None:
        return None, None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (int(value), None) if math.isfinite(value) and value > 0 else (None, None)
    text = str(value).strip().upper()
    status = STATUS_ALIASES.get(text)
    if status is not None:
        return None, status
    text = _LEADING_T.sub("", text)
    try:
        position = int(float(text))
    except ValueError:
        return None, None
    return (position, None) if position > 0 else (None, None)


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip() or None


def player_identity(row: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    name = _first(row, PLAYER_NAME_KEYS)
    return _as_id(_first(row, PLAYER_ID_KEYS)), (str(name).strip() if name is not None else None)


# ── Payload structure ───────────────────────────────────────────────────
def extract_rows(payload: Any) -> list[dict[str, Any]]:
    """Locate the row array in a payload, wherever the endpoint put it."""
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if not isinstance(payload, dict):
        return []
    for key in ROW_CONTAINER_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return [r for r in value if isinstance(r, dict)]
    for outer in ("data", "odds"):
        nested = payload.get(outer)
        if isinstance(nested, dict):
            rows = extract_rows(nested)
            if rows:
                return rows
    return []


def extract_event_meta(payload: Any) -> tuple[Optional[str], Optional[str]]:
    """(event id, event name) from the payload envelope."""
    if not isinstance(payload, dict):
        return None, None
    event = payload.get("event") if isinstance(payload.get("event"), dict) else {}
    info = payload.get("info") if isinstance(payload.get("info"), dict) else {}
    event_id = _first(payload, ("event_id", "eventId")) or _first(event, ("event_id", "id")) or _first(
        info, ("event_id", "eventId")
    )
    event_name = _first(payload, ("event_name", "eventName")) or _first(event, ("name", "event_name")) or _first(
        info, ("event_name",)
    )
    return _as_id(event_id), (str(event_name) if event_name is not None else None)


def resolve_event_id(payload: Any, rows: list[dict[str, Any]] | None = None) -> Optional[str]:
    """Event id from the envelope, falling back to the first row that carries one."""
    event_id, _ = extract_event_meta(payload)
    if event_id:
        return event_id
    for row in rows if rows is not None else extract_rows(payload):
        row_event = _as_id(_first(row, ("event_id", "eventId")))
        if row_event:
            return row_event
    return None


def payload_error(payload: Any) -> Optional[str]:
    """Error message embedded in a 200 response body, if any."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    status = payload.get("status")
    if isinstance(status, str) and status.lower() not in ("ok", "success"):
        return status
    return None


# ── Scoring feed ────────────────────────────────────────────────────────
def extract_scoring(row: dict[str, Any]) -> Optional[ScoringSnapshot]:
    """Canonical scoring snapshot, or None when the row has no scoring field at all."""
    raw_position = _first(row, POSITION_KEYS)
    position, status = parse_position(raw_position)
    if status is None:
        raw_status = _first(row, ("status", "player_status"))
        if raw_status is not None:
            status = STATUS_ALIASES.get(str(raw_status).strip().upper())

    rounds = {f"r{n}": to_number(_first(row, keys)) for n, keys in ROUND_KEYS.items()}
    thru_raw = _first(row, THRU_KEYS)
    thru: Any = None
    if thru_raw is not None:
        thru_num = to_number(thru_raw)
        thru = int(thru_num) if thru_num is not None else str(thru_raw).strip()
    current_round = to_number(_first(row, CURRENT_ROUND_KEYS))

    snapshot = ScoringSnapshot(
        position=position,
        status=status,
        total_to_par=to_number(_first(row, TOTAL_KEYS)),
        today_to_par=to_number(_first(row, TODAY_KEYS)),
        thru=thru,
        current_round=int(current_round) if current_round is not None else None,
        **rounds,
    )
    if not snapshot.model_dump(exclude_none=True):
        return None
    return snapshot


def extract_probabilities(row: dict[str, Any]) -> Optional[Probabilities]:
    values = {field: to_number(_first(row, keys)) for field, keys in PROBABILITY_KEYS.items()}
    if all(v is None for v in values.values()):
        return None
    return Probabilities(**values)


def normalize_scoring_feed(payload: Any) -> ScoringFeed:
    rows = extract_rows(payload)
    event_id, event_name = extract_event_meta(payload)
    players: list[FeedPlayer] = []
    unreadable = 0
    for row in rows:
        player_id, player_name = player_identity(row)
        if player_id is None and player_name is None:
            unreadable += 1
            continue
        players.append(
            FeedPlayer(
                player_id=player_id,
                player_name=player_name,
                scoring=extract_scoring(row),
                probabilities=extract_probabilities(row),
            )
        )
    return ScoringFeed(
        event_id=event_id or resolve_event_id(payload, rows),
        event_name=event_name,
        players=players,
        unreadable_rows=unreadable,
    )


# ── Odds feed ───────────────────────────────────────────────────────────
def _entry_price(entry: dict[str, Any], name_keys: Iterable[str], odds_format: str) -> Optional[tuple[str, float]]:
    book = normalize_book_key(_first(entry, name_keys))
    price = to_decimal(_first(entry, BOOK_PRICE_KEYS), odds_format)
    if book and price is not None:
        return book, price
    return None


def _book_prices(row: dict[str, Any], odds_format: str) -> list[tuple[str, float]]:
    """
    (normalized book, decimal price) pairs from any of the row shapes:
    a list of {book, odds} entries, an embedded book -> price map, one
    {book, odds} pair on the row itself, or book keys directly on the row.
    """
    for container_key in BOOK_CONTAINER_KEYS:
        container = row.get(container_key)
        if isinstance(container, list):
            found = (_entry_price(e, BOOK_NAME_KEYS, odds_format) for e in container if isinstance(e, dict))
            return [pair for pair in found if pair]
        if isinstance(container, dict):
            return _flat_book_prices(container, odds_format)

    single = _entry_price(row, ROW_BOOK_KEYS, odds_format)
    if single:
        return [single]
    return _flat_book_prices(row, odds_format)


def _flat_book_prices(mapping: dict[str, Any], odds_format: str) -> list[tuple[str, float]]:
    pairs: list[tuple[str, float]] = []
    for raw_book, raw_price in mapping.items():
        if raw_book in NON_BOOK_KEYS or isinstance(raw_price, (dict, list)):
            continue
        book = normalize_book_key(raw_book)
        price = to_decimal(raw_price, odds_format)
        if book and price is not None:
            pairs.append((book, price))
    return pairs


def normalize_odds_feed(payload: Any, market: str, allowed_books: frozenset[str]) -> OddsFeed:
    """
    Flatten an outrights payload into per-player offers from allow-listed books.

    `books_seen` records every book present before the allow-list was applied.
    """
    rows = extract_rows(payload)
    odds_format = "decimal"
    if isinstance(payload, dict) and isinstance(payload.get("odds_format"), str):
        odds_format = payload["odds_format"].lower()

    offers: list[OddsOffer] = []
    books_seen: set[str] = set()
    for row in rows:
        player_id, player_name = player_identity(row)
        for book, price in _book_prices(row, odds_format):
            books_seen.add(book)
            if not is_allowed(book, allowed_books):
                continue
            offers.append(OddsOffer(player_id=player_id, player_name=player_name, book=book, price=price))

    return OddsFeed(
        market=market,
        event_id=resolve_event_id(payload, rows),
        row_count=len(rows),
        offers=offers,
        books_seen=books_seen,
    )
