"""
Settlement rules. Pure functions, no I/O.

Outcome.PENDING means "not settled yet, wait". None means the data can
never settle the bet as it stands (unknown market, completed event with no
finishing position, first-round-leader bet without full-field scores).
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence

from shared.models.domain import ScoringSnapshot
from shared.models.enums import EventStatus, Outcome, PlayerStatus

from feeds.markets import (
    CUT_MARKETS,
    FIRST_ROUND_LEADER,
    MAKE_CUT,
    MISS_CUT,
    WIN,
    normalize_market_key,
    parse_top_n,
)

DEFAULT_NO_CUT_TOURS = frozenset({"LIV"})

_OUT = frozenset({PlayerStatus.MISSED_CUT, PlayerStatus.WITHDRAWN, PlayerStatus.DISQUALIFIED})
_RETIRED = frozenset({PlayerStatus.WITHDRAWN, PlayerStatus.DISQUALIFIED})


def _made_cut_evidence(scoring: ScoringSnapshot) -> bool:
    """Weekend rounds recorded, or still holding a leaderboard position."""
    if scoring.r3 is not None or scoring.r4 is not None:
        return True
    return scoring.status is None and scoring.position is not None and scoring.position > 0


def _miss_cut(scoring: ScoringSnapshot, completed: bool) -> Outcome:
    if scoring.status == PlayerStatus.MISSED_CUT:
        return Outcome.WON
    if scoring.status in _RETIRED:
        return Outcome.LOST
    if _made_cut_evidence(scoring) or completed:
        return Outcome.LOST
    return Outcome.PENDING


_MIRROR = {Outcome.WON: Outcome.LOST, Outcome.LOST: Outcome.WON, Outcome.PENDING: Outcome.PENDING}


def determine_frl_outcome(
    scoring: Optional[ScoringSnapshot],
    field: Optional[Sequence[ScoringSnapshot]],
) -> Optional[Outcome]:
    """First-round-leader settlement against every first-round score in the field."""
    if scoring is None or not field:
        return None
    if scoring.status in _RETIRED and scoring.r1 is None:
        return Outcome.LOST

    # retirements still count once round one was completed
    posted = [p.r1 for p in field if p.r1 is not None]
    if len(posted) < len(field) * 0.5:
        return Outcome.PENDING
    if scoring.r1 is None:
        return Outcome.LOST

    lead = min(posted)
    if scoring.r1 > lead:
        return Outcome.LOST
    return Outcome.WON if posted.count(lead) == 1 else Outcome.PUSH


def determine_bet_outcome(
    market: Optional[str],
    scoring: Optional[ScoringSnapshot],
    event_status: EventStatus,
    tour: Optional[str] = None,
    *,
    field: Optional[Sequence[ScoringSnapshot]] = None,
    no_cut_tours: Iterable[str] = DEFAULT_NO_CUT_TOURS,
) -> Optional[Outcome]:
    """
    Settle one bet.

    Args:
        market: Market key (win, top_5 / top5, mc, make_cut, frl).
        scoring: The player's live snapshot, if the player was found.
        event_status: COMPLETED settles final positions; anything else is treated as live.
        tour: Tour code; cut markets on tours without a cut are void.
        field: Every player's snapshot, needed for first-round-leader bets.
        no_cut_tours: Tours that play without a cut.
    """
    key = normalize_market_key(market)
    if not key:
        return None

    if key in CUT_MARKETS and (tour or "").upper() in set(no_cut_tours):
        return Outcome.PUSH

    completed = event_status == EventStatus.COMPLETED
    snapshot = scoring or ScoringSnapshot()

    if key == MISS_CUT:
        return _miss_cut(snapshot, completed)
    if key == MAKE_CUT:
        return _MIRROR[_miss_cut(snapshot, completed)]

    if key == WIN:
        if snapshot.status in _OUT:
            return Outcome.LOST
        if completed and snapshot.position is not None:
            return Outcome.WON if snapshot.position == 1 else Outcome.LOST
        return Outcome.PENDING

    n = parse_top_n(key)
    if n is not None:
        if snapshot.status in _OUT:
            return Outcome.LOST
        if completed:
            if snapshot.position is None:
                return None
            return Outcome.WON if snapshot.position <= n else Outcome.LOST
        return Outcome.PENDING

    if key == FIRST_ROUND_LEADER:
        return determine_frl_outcome(scoring, field)

    return None
