"""Tournament completion: calendar end date, or the whole tracked field finished the final round."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from shared.models.domain import ScoringSnapshot

FINISHED_THRU = frozenset({"18", "f", "finished"})


def final_round_for(tour: Optional[str], no_cut_tours: Iterable[str] = ("LIV",)) -> int:
    return 3 if (tour or "").upper() in set(no_cut_tours) else 4


def finished_round(thru: object) -> bool:
    return thru is not None and str(thru).strip().lower() in FINISHED_THRU


def all_finished_final_round(snapshots: Sequence[Optional[ScoringSnapshot]], final_round: int) -> bool:
    """
    True when every player with round and hole progress is in `final_round`
    and through 18. Players already out of the event (MC / WD / DQ) are ignored.
    """
    in_progress = [s for s in snapshots if s is not None and s.status is None and s.has_progress]
    if not in_progress:
        return False
    return all(s.current_round == final_round and finished_round(s.thru) for s in in_progress)


def is_tournament_complete(
    end_date: Optional[datetime],
    now: datetime,
    snapshots: Sequence[Optional[ScoringSnapshot]],
    tour: Optional[str],
    no_cut_tours: Iterable[str] = ("LIV",),
) -> tuple[bool, bool]:
    """
    Returns (complete, by_calendar).

    `by_calendar` is False when completion was detected from scoring ahead of
    the stored end date, in which case live outcomes need recomputing.
    """
    by_calendar = end_date is not None and end_date < now
    if by_calendar:
        return True, True
    return all_finished_final_round(snapshots, final_round_for(tour, no_cut_tours)), False
