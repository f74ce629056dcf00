"""
Knockout bracket: seed placement, up-front linked structure, winner
advancement and the score-edit guard once the bracket has progressed.
"""
import pytest
from sqlmodel import Session, select

from bracket_engine.exceptions import ConsistencyError, ValidationError
from bracket_engine.models.draw_state import DRAW_COMPLETED, DRAW_KNOCKOUT
from bracket_engine.models.match import PHASE_SWISS, SIDE_A, SIDE_B, STATUS_READY, STATUS_SCHEDULED, TERMINAL_STATUSES, Match
from bracket_engine.services.court_assignment import mark_ready
from bracket_engine.services.knockout_bracket import (
    bracket_seed_order,
    build_bracket_structure,
    build_knockout_bracket,
    knockout_round_label,
)
from bracket_engine.services.match_finalizer import edit_score, record_walkover
from bracket_engine.services.roster import withdraw_entry
from bracket_engine.services.standings_calculator import calculate_standings, get_qualifiers
from bracket_engine.services.swiss_pairing import generate_next_round, generate_round_1, get_draw_state
from tests.conftest import make_courts, make_singles_division, make_tournament, play_match


class TestSeedOrder:
    def test_small_brackets(self):
        assert bracket_seed_order(2) == [1, 2]
        assert bracket_seed_order(4) == [1, 4, 2, 3]
        assert bracket_seed_order(8) == [1, 8, 4, 5, 3, 6, 2, 7]

    def test_sixteen(self):
        assert bracket_seed_order(16) == [1, 16, 8, 9, 4, 13, 5, 12, 3, 14, 6, 11, 7, 10, 2, 15]

    def test_first_round_pairs_sum_to_size_plus_one(self):
        order = bracket_seed_order(32)
        assert sorted(order) == list(range(1, 33))
        assert all(order[i] + order[i + 1] == 33 for i in range(0, 32, 2))

    @pytest.mark.parametrize("size", [0, 1, 3, 6, 12])
    def test_non_power_of_two_rejected(self, size):
        with pytest.raises(ValidationError):
            bracket_seed_order(size)


class TestStructure:
    def test_eight_qualifiers(self):
        slots = build_bracket_structure(8)
        assert len(slots) == 7
        sizes = [len([s for s in slots if s.round_number == r]) for r in (1, 2, 3)]
        assert sizes == [4, 2, 1]

    def test_linking(self):
        slots = {(s.round_number, s.sequence): s for s in build_bracket_structure(8)}
        assert (slots[(1, 1)].next_sequence, slots[(1, 1)].next_side) == (1, SIDE_A)
        assert (slots[(1, 2)].next_sequence, slots[(1, 2)].next_side) == (1, SIDE_B)
        assert (slots[(1, 3)].next_sequence, slots[(1, 3)].next_side) == (2, SIDE_A)
        assert (slots[(2, 2)].next_sequence, slots[(2, 2)].next_side) == (1, SIDE_B)
        assert slots[(3, 1)].next_sequence is None

    def test_top_two_seeds_only_meet_in_the_final(self):
        slots = [s for s in build_bracket_structure(8) if s.round_number == 1]
        seq_of = {}
        for s in slots:
            seq_of[s.seed_a] = s.sequence
            seq_of[s.seed_b] = s.sequence
        a, b = seq_of[1], seq_of[2]
        meets_in = 1
        while a != b:
            a, b = (a + 1) // 2, (b + 1) // 2
            meets_in += 1
        assert meets_in == 3

    def test_round_labels(self):
        assert knockout_round_label(3, 3) == "Final"
        assert knockout_round_label(2, 3) == "Semi-Final"
        assert knockout_round_label(1, 3) == "Quarter-Final"
        assert knockout_round_label(1, 4) == "Round of 16"


# ============================================================================
# DB-backed bracket
# ============================================================================


def _finish_swiss(session: Session, division_id: int, rounds: int):
    """Decide every Swiss match by walkover to side A, round by round."""
    generate_round_1(session, division_id)
    for round_number in range(1, rounds + 1):
        pending = session.exec(
            select(Match).where(
                Match.division_id == division_id,
                Match.phase == PHASE_SWISS,
                Match.round_number == round_number,
            )
        ).all()
        for m in pending:
            if m.status not in TERMINAL_STATUSES:
                record_walkover(session, m.id, SIDE_A)
        if round_number < rounds:
            generate_next_round(session, division_id)


def _knockout_division(session: Session, entry_count: int, qualifiers: int):
    tournament = make_tournament(session)
    division, entries = make_singles_division(session, tournament, entry_count, swiss_qualifiers=qualifiers)
    _finish_swiss(session, division.id, division.swiss_rounds)
    return tournament, division


def _round(matches, round_number):
    return sorted([m for m in matches if m.round_number == round_number], key=lambda m: m.sequence)


def test_build_eight_qualifier_bracket(session: Session):
    _, division = _knockout_division(session, 8, 8)
    ranked = [r.entry_id for r in calculate_standings(session, division.id, 3)]

    matches = build_knockout_bracket(session, division.id)

    assert [len(_round(matches, r)) for r in (1, 2, 3)] == [4, 2, 1]
    first = _round(matches, 1)
    assert (first[0].side_a_entry_id, first[0].side_b_entry_id) == (ranked[0], ranked[7])
    assert all(m.side_a_entry_id and m.side_b_entry_id for m in first)
    for m in _round(matches, 2) + _round(matches, 3):
        assert m.side_a_entry_id is None and m.side_b_entry_id is None
        assert m.status == STATUS_SCHEDULED

    second = _round(matches, 2)
    assert first[0].next_match_id == second[0].id and first[0].next_match_side == SIDE_A
    assert first[1].next_match_id == second[0].id and first[1].next_match_side == SIDE_B
    assert _round(matches, 3)[0].next_match_id is None

    state = get_draw_state(session, division.id)
    assert state.phase == DRAW_KNOCKOUT
    assert state.knockout_rounds == 3

    with pytest.raises(ValidationError):
        build_knockout_bracket(session, division.id)


def test_bracket_requires_finished_swiss(session: Session):
    tournament = make_tournament(session)
    division, _ = make_singles_division(session, tournament, 4, swiss_qualifiers=4)
    generate_round_1(session, division.id)
    with pytest.raises(ValidationError, match="not complete"):
        build_knockout_bracket(session, division.id)


def test_bracket_requires_power_of_two_qualifiers(session: Session):
    _, division = _knockout_division(session, 4, 0)
    with pytest.raises(ValidationError, match="power of two"):
        build_knockout_bracket(session, division.id)


def test_withdrawn_entry_never_qualifies(session: Session):
    _, division = _knockout_division(session, 8, 4)
    ranked = [r.entry_id for r in calculate_standings(session, division.id, 3)]
    withdraw_entry(session, ranked[0])

    # Next four in standings order move up into seeds 1-4
    eligible = ranked[1:5]
    assert [r.entry_id for r in get_qualifiers(session, division.id)] == eligible

    first = _round(build_knockout_bracket(session, division.id), 1)
    sides = [(m.side_a_entry_id, m.side_b_entry_id) for m in first]
    assert sides == [(eligible[0], eligible[3]), (eligible[1], eligible[2])]
    assert ranked[0] not in {entry_id for pair in sides for entry_id in pair}


def test_winner_advances_into_named_slot(session: Session):
    tournament, division = _knockout_division(session, 4, 4)
    court = make_courts(session, tournament)[0]
    first = _round(build_knockout_bracket(session, division.id), 1)

    play_match(session, first[1], court, [[15, 21], [18, 21]])

    final = session.get(Match, first[1].next_match_id)
    session.refresh(final)
    assert final.side_b_entry_id == first[1].side_b_entry_id
    assert final.side_a_entry_id is None


def test_winner_change_rewrites_slot_while_next_match_is_scheduled(session: Session):
    tournament, division = _knockout_division(session, 4, 4)
    court = make_courts(session, tournament)[0]
    first = _round(build_knockout_bracket(session, division.id), 1)

    play_match(session, first[0], court, [[21, 15], [21, 18]])
    edited = edit_score(session, first[0].id, [[15, 21], [18, 21]], actor="td")

    assert edited.winner_side == SIDE_B
    final = session.get(Match, first[0].next_match_id)
    session.refresh(final)
    assert final.side_a_entry_id == first[0].side_b_entry_id


def test_winner_change_rejected_once_next_match_left_scheduled(session: Session):
    tournament, division = _knockout_division(session, 4, 4)
    court = make_courts(session, tournament)[0]
    first = _round(build_knockout_bracket(session, division.id), 1)
    play_match(session, first[0], court, [[21, 15], [21, 18]])
    play_match(session, first[1], court, [[21, 10], [21, 12]])
    final = mark_ready(session, first[0].next_match_id)
    assert final.status == STATUS_READY

    with pytest.raises(ConsistencyError):
        edit_score(session, first[0].id, [[15, 21], [18, 21]])

    # Same winner, corrected points: still allowed
    edited = edit_score(session, first[0].id, [[21, 19], [21, 18]])
    assert edited.winner_side == SIDE_A
    assert edited.score_json["total_points_a"] == 42


def test_final_completes_the_draw(session: Session):
    tournament, division = _knockout_division(session, 4, 2)
    court = make_courts(session, tournament)[0]
    matches = build_knockout_bracket(session, division.id)
    assert len(matches) == 1

    play_match(session, matches[0], court, [[21, 15], [21, 18]])

    assert get_draw_state(session, division.id).phase == DRAW_COMPLETED
