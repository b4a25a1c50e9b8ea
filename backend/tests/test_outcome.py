"""
Unit tests for bet settlement.

Run: pytest backend/tests/test_outcome.py -v
"""
from __future__ import annotations

import pytest

from shared.models.domain import ScoringSnapshot
from shared.models.enums import EventStatus, Outcome, PlayerStatus
from tracker.outcome import determine_bet_outcome, determine_frl_outcome

LIVE = EventStatus.LIVE
DONE = EventStatus.COMPLETED

SNAPSHOTS = [
    None,
    ScoringSnapshot(),
    ScoringSnapshot(position=3),
    ScoringSnapshot(position=70, r1=74, r2=75),
    ScoringSnapshot(position=12, r3=70),
    ScoringSnapshot(status=PlayerStatus.MISSED_CUT),
    ScoringSnapshot(status=PlayerStatus.WITHDRAWN),
    ScoringSnapshot(status=PlayerStatus.DISQUALIFIED, r1=80),
]


# ── Win / top-N ─────────────────────────────────────────────────────────

class TestPlacingMarkets:
    def test_win_completed_first_place_won(self) -> None:
        assert determine_bet_outcome("win", ScoringSnapshot(position=1), DONE) == Outcome.WON

    @pytest.mark.parametrize("position", [2, 5, 60])
    def test_win_completed_other_position_lost(self, position: int) -> None:
        assert determine_bet_outcome("win", ScoringSnapshot(position=position), DONE) == Outcome.LOST

    def test_win_live_leader_still_pending(self) -> None:
        assert determine_bet_outcome("win", ScoringSnapshot(position=1), LIVE) == Outcome.PENDING

    def test_win_missed_cut_lost_while_live(self) -> None:
        snap = ScoringSnapshot(status=PlayerStatus.MISSED_CUT)
        assert determine_bet_outcome("win", snap, LIVE) == Outcome.LOST

    def test_top_10_boundary(self) -> None:
        assert determine_bet_outcome("top_10", ScoringSnapshot(position=10), DONE) == Outcome.WON
        assert determine_bet_outcome("top_10", ScoringSnapshot(position=11), DONE) == Outcome.LOST

    def test_top_5_sixth_place_lost(self) -> None:
        snap = ScoringSnapshot(position=6, status=None)
        assert determine_bet_outcome("top_5", snap, DONE) == Outcome.LOST

    def test_top_n_key_without_underscore(self) -> None:
        assert determine_bet_outcome("top20", ScoringSnapshot(position=20), DONE) == Outcome.WON

    def test_top_n_completed_without_position_unsettled(self) -> None:
        assert determine_bet_outcome("top_20", ScoringSnapshot(total_to_par=-3), DONE) is None

    def test_top_n_withdrawn_lost(self) -> None:
        snap = ScoringSnapshot(status=PlayerStatus.WITHDRAWN)
        assert determine_bet_outcome("top_5", snap, LIVE) == Outcome.LOST

    def test_unknown_market_unsettled(self) -> None:
        assert determine_bet_outcome("matchup", ScoringSnapshot(position=1), DONE) is None
        assert determine_bet_outcome("", ScoringSnapshot(position=1), DONE) is None


# ── Cut markets ─────────────────────────────────────────────────────────

class TestCutMarkets:
    def test_missed_cut_status_wins_mc(self) -> None:
        snap = ScoringSnapshot(status=PlayerStatus.MISSED_CUT)
        assert determine_bet_outcome("mc", snap, LIVE) == Outcome.WON
        assert determine_bet_outcome("make_cut", snap, LIVE) == Outcome.LOST

    def test_weekend_round_means_cut_made(self) -> None:
        snap = ScoringSnapshot(position=40, r3=71)
        assert determine_bet_outcome("mc", snap, LIVE) == Outcome.LOST
        assert determine_bet_outcome("make_cut", snap, LIVE) == Outcome.WON

    def test_no_evidence_live_is_pending(self) -> None:
        assert determine_bet_outcome("mc", ScoringSnapshot(), LIVE) == Outcome.PENDING
        assert determine_bet_outcome("make_cut", None, LIVE) == Outcome.PENDING

    def test_no_evidence_completed_settles_mc_lost(self) -> None:
        assert determine_bet_outcome("mc", ScoringSnapshot(), DONE) == Outcome.LOST

    def test_withdrawn_loses_miss_cut(self) -> None:
        snap = ScoringSnapshot(status=PlayerStatus.WITHDRAWN)
        assert determine_bet_outcome("mc", snap, LIVE) == Outcome.LOST

    @pytest.mark.parametrize("snap", SNAPSHOTS)
    @pytest.mark.parametrize("status", [LIVE, DONE])
    def test_no_cut_tour_is_push(self, snap: ScoringSnapshot, status: EventStatus) -> None:
        assert determine_bet_outcome("mc", snap, status, "LIV") == Outcome.PUSH
        assert determine_bet_outcome("make_cut", snap, status, "liv") == Outcome.PUSH

    def test_no_cut_tours_configurable(self) -> None:
        snap = ScoringSnapshot(status=PlayerStatus.MISSED_CUT)
        assert determine_bet_outcome("mc", snap, LIVE, "LIV", no_cut_tours=()) == Outcome.WON
        assert determine_bet_outcome("mc", snap, LIVE, "PGA", no_cut_tours=("PGA",)) == Outcome.PUSH

    @pytest.mark.parametrize("snap", SNAPSHOTS)
    @pytest.mark.parametrize("status", [LIVE, DONE])
    @pytest.mark.parametrize("tour", ["PGA", "LIV"])
    def test_complementary_markets_never_agree(
        self, snap: ScoringSnapshot, status: EventStatus, tour: str
    ) -> None:
        mc = determine_bet_outcome("mc", snap, status, tour)
        make = determine_bet_outcome("make_cut", snap, status, tour)
        if tour == "LIV":
            assert mc == make == Outcome.PUSH
        else:
            assert not (mc == make == Outcome.WON)
            assert not (mc == make == Outcome.LOST)


# ── First-round leader ──────────────────────────────────────────────────

class TestFirstRoundLeader:
    def test_under_half_posted_is_pending_for_everyone(self) -> None:
        field = [ScoringSnapshot(r1=64), ScoringSnapshot(), ScoringSnapshot(), ScoringSnapshot(r1=70)]
        field.append(ScoringSnapshot())
        for snap in field:
            assert determine_frl_outcome(snap, field) == Outcome.PENDING

    def test_outright_leader_won_others_lost(self) -> None:
        leader = ScoringSnapshot(r1=63)
        chaser = ScoringSnapshot(r1=65)
        field = [leader, chaser, ScoringSnapshot(r1=70)]
        assert determine_frl_outcome(leader, field) == Outcome.WON
        assert determine_frl_outcome(chaser, field) == Outcome.LOST

    def test_tied_leaders_push(self) -> None:
        a, b = ScoringSnapshot(r1=64), ScoringSnapshot(r1=64)
        c = ScoringSnapshot(r1=66)
        field = [a, b, c]
        assert determine_frl_outcome(a, field) == Outcome.PUSH
        assert determine_frl_outcome(b, field) == Outcome.PUSH
        assert determine_frl_outcome(c, field) == Outcome.LOST

    def test_missing_field_unsettled(self) -> None:
        assert determine_frl_outcome(ScoringSnapshot(r1=60), None) is None
        assert determine_bet_outcome("frl", ScoringSnapshot(r1=60), LIVE) is None

    def test_withdrawn_before_posting_lost(self) -> None:
        wd = ScoringSnapshot(status=PlayerStatus.WITHDRAWN)
        field = [ScoringSnapshot(r1=66), ScoringSnapshot(r1=68), wd]
        assert determine_frl_outcome(wd, field) == Outcome.LOST

    def test_routed_through_bet_outcome(self) -> None:
        leader = ScoringSnapshot(r1=62)
        field = [leader, ScoringSnapshot(r1=67)]
        assert determine_bet_outcome("FRL", leader, LIVE, field=field) == Outcome.WON
