"""
Result recording: direct completion, walkovers, referee sign-off and score
edits, with court release and standings effects.
"""
import pytest
from sqlmodel import Session, select

from bracket_engine.exceptions import StateTransitionError, ValidationError
from bracket_engine.models.audit_event import AuditEvent
from bracket_engine.models.court import Court
from bracket_engine.models.court_assignment import CourtAssignment
from bracket_engine.models.match import (
    SIDE_A,
    SIDE_B,
    STATUS_COMPLETED,
    STATUS_ON_COURT,
    STATUS_PENDING_SIGNOFF,
    STATUS_WALKOVER,
)
from bracket_engine.services.court_assignment import assign_match_to_court, mark_ready, start_match
from bracket_engine.services.match_finalizer import (
    approve_result,
    complete_match,
    decide_winner,
    edit_score,
    record_walkover,
    reject_result,
    submit_result,
)
from bracket_engine.services.score_payload import parse_games
from bracket_engine.services.standings_calculator import calculate_standings, get_stored_standings, recalculate_standings
from bracket_engine.services.swiss_pairing import generate_round_1
from tests.conftest import make_courts, make_singles_division, make_tournament, play_match


class TestDecideWinner:
    def test_more_games_won(self):
        assert decide_winner(parse_games("21-15, 18-21, 21-19")) == SIDE_A
        assert decide_winner(parse_games("15-21, 21-18, 19-21")) == SIDE_B

    def test_explicit_side_wins(self):
        assert decide_winner(parse_games("15-21"), SIDE_A) == SIDE_A

    def test_level_games_need_a_side(self):
        with pytest.raises(ValidationError):
            decide_winner(parse_games("21-15, 15-21"))

    def test_bad_side(self):
        with pytest.raises(ValidationError):
            decide_winner(parse_games("21-15"), "C")


def _on_court(session: Session):
    tournament = make_tournament(session)
    division, entries = make_singles_division(session, tournament, 4)
    court = make_courts(session, tournament)[0]
    match = generate_round_1(session, division.id).matches[0]
    mark_ready(session, match.id)
    assign_match_to_court(session, match.id, court.id, actor="td")
    start_match(session, match.id)
    return division, entries, court, match


def _row(session: Session, division_id: int, entry_id: int):
    return {r.entry_id: r for r in calculate_standings(session, division_id, 1)}[entry_id]


def test_complete_records_score_and_frees_court(session: Session):
    division, entries, court, match = _on_court(session)

    done = complete_match(session, match.id, [[21, 15], [21, 18]], actor="td")

    assert done.status == STATUS_COMPLETED
    assert done.winner_side == SIDE_A
    assert done.score_json["total_points_a"] == 42
    assert done.score_json["total_points_b"] == 33
    assert done.ended_at is not None
    assert session.get(Court, court.id).current_match_id is None
    history = session.exec(select(CourtAssignment).where(CourtAssignment.match_id == match.id)).one()
    assert history.unassigned_at is not None

    winner = _row(session, division.id, done.side_a_entry_id)
    loser = _row(session, division.id, done.side_b_entry_id)
    assert (winner.wins, winner.points_for, winner.points_against) == (1, 42, 33)
    assert (loser.losses, loser.points_for, loser.points_against) == (1, 33, 42)


def test_complete_requires_on_court(session: Session):
    tournament = make_tournament(session)
    division, _ = make_singles_division(session, tournament, 4)
    match = generate_round_1(session, division.id).matches[0]
    mark_ready(session, match.id)
    with pytest.raises(StateTransitionError):
        complete_match(session, match.id, [[21, 15]])


def test_negative_score_leaves_match_on_court(session: Session):
    _, _, court, match = _on_court(session)
    with pytest.raises(ValidationError):
        complete_match(session, match.id, [[21, -3]])
    session.refresh(match)
    assert match.status == STATUS_ON_COURT
    assert session.get(Court, court.id).current_match_id == match.id


def test_walkover_before_play(session: Session):
    tournament = make_tournament(session)
    division, _ = make_singles_division(session, tournament, 4)
    match = generate_round_1(session, division.id).matches[0]

    done = record_walkover(session, match.id, SIDE_B, actor="td", reason="no show")

    assert done.status == STATUS_WALKOVER
    assert done.winner_side == SIDE_B
    assert done.score_json == {"kind": "walkover"}
    winner = _row(session, division.id, done.side_b_entry_id)
    assert (winner.wins, winner.points_for, winner.points_against) == (1, 0, 0)
    event = session.exec(select(AuditEvent).where(AuditEvent.event_type == "match_walkover")).one()
    assert event.payload_json["reason"] == "no show"


def test_walkover_on_a_bye_rejected(session: Session):
    tournament = make_tournament(session)
    division, _ = make_singles_division(session, tournament, 3)
    bye = [m for m in generate_round_1(session, division.id).matches if m.side_b_entry_id is None][0]
    with pytest.raises(ValidationError, match="bye"):
        record_walkover(session, bye.id, SIDE_A)


def test_submit_then_approve(session: Session):
    division, _, court, match = _on_court(session)

    pending = submit_result(session, match.id, "21-15, 18-21, 21-19", actor="ref")
    assert pending.status == STATUS_PENDING_SIGNOFF
    assert pending.pending_result_json["games"] == [[21, 15], [18, 21], [21, 19]]
    assert pending.pending_result_json["submitted_by"] == "ref"
    # Nothing counts until sign-off
    assert _row(session, division.id, match.side_a_entry_id).wins == 0
    assert session.get(Court, court.id).current_match_id == match.id

    done = approve_result(session, match.id, actor="td")
    assert done.status == STATUS_COMPLETED
    assert done.winner_side == SIDE_A
    assert done.pending_result_json is None
    assert done.score_json["total_points_a"] == 60
    assert session.get(Court, court.id).current_match_id is None


def test_reject_returns_match_to_court(session: Session):
    _, _, court, match = _on_court(session)
    submit_result(session, match.id, [[21, 15], [21, 18]], actor="ref")

    back = reject_result(session, match.id, actor="td", reason="scores swapped")

    assert back.status == STATUS_ON_COURT
    assert back.pending_result_json is None
    assert session.get(Court, court.id).current_match_id == match.id
    with pytest.raises(StateTransitionError):
        approve_result(session, match.id)


def test_submit_requires_on_court(session: Session):
    tournament = make_tournament(session)
    division, _ = make_singles_division(session, tournament, 4)
    match = generate_round_1(session, division.id).matches[0]
    with pytest.raises(StateTransitionError):
        submit_result(session, match.id, [[21, 15]])


def test_edit_score_updates_stored_standings(session: Session):
    division, _, court, match = _on_court(session)
    complete_match(session, match.id, [[21, 15], [21, 18]])
    recalculate_standings(session, division.id, 1)

    edited = edit_score(session, match.id, [[15, 21], [18, 21]], actor="td")

    assert edited.winner_side == SIDE_B
    stored = {s.entry_id: s for s in get_stored_standings(session, division.id, 1)}
    assert (stored[match.side_b_entry_id].wins, stored[match.side_b_entry_id].points_for) == (1, 42)
    assert stored[match.side_a_entry_id].wins == 0
    event = session.exec(select(AuditEvent).where(AuditEvent.event_type == "score_edited")).one()
    assert event.payload_json["old_winner_side"] == SIDE_A
    assert event.payload_json["new_winner_side"] == SIDE_B


def test_edit_score_refused_for_walkover_and_unfinished(session: Session):
    tournament = make_tournament(session)
    division, _ = make_singles_division(session, tournament, 4)
    court = make_courts(session, tournament)[0]
    first, second = generate_round_1(session, division.id).matches
    record_walkover(session, first.id, SIDE_A)
    with pytest.raises(StateTransitionError):
        edit_score(session, first.id, [[21, 15]])
    with pytest.raises(StateTransitionError):
        edit_score(session, second.id, [[21, 15]])

    play_match(session, second, court, [[21, 15]])
    assert edit_score(session, second.id, [[21, 17]]).score_json["total_points_b"] == 17


def test_edit_score_refused_for_bye(session: Session):
    tournament = make_tournament(session)
    division, _ = make_singles_division(session, tournament, 3)
    bye = [m for m in generate_round_1(session, division.id).matches if m.side_b_entry_id is None][0]
    with pytest.raises(ValidationError, match="no played score"):
        edit_score(session, bye.id, [[21, 0]])
