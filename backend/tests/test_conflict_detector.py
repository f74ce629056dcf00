"""
Conflict detection: player overlap (blocking error) and rest window
(overridable warning), with doubles entries resolved through their team.
"""
from datetime import datetime, timedelta

from sqlmodel import Session

from bracket_engine.models.division import PLAY_MODE_SINGLES, Division
from bracket_engine.models.match import STATUS_COMPLETED, STATUS_ON_COURT, Match
from bracket_engine.models.participant import Participant
from bracket_engine.services.conflict_detector import (
    CONFLICT_PLAYER_OVERLAP,
    CONFLICT_REST_VIOLATION,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
    detect_conflicts,
    find_conflicts,
    resolve_participants,
)
from bracket_engine.services.court_assignment import assign_match_to_court, mark_ready
from bracket_engine.services.roster import create_team, register_entry
from bracket_engine.services.swiss_pairing import generate_round_1
from bracket_engine.utils.queries import fetch_recent_completed_matches
from tests.conftest import make_courts, make_doubles_division, make_singles_division, make_tournament, play_match

NOW = datetime(2026, 5, 2, 12, 0, 0)


def _match(match_id, a, b, status=STATUS_COMPLETED, court_id=None, ended_at=None):
    return Match(
        id=match_id,
        division_id=1,
        round_number=1,
        sequence=match_id,
        side_a_entry_id=a,
        side_b_entry_id=b,
        status=status,
        court_id=court_id,
        ended_at=ended_at,
    )


class TestFindConflicts:
    resolved = {1: [101], 2: [102], 3: [103], 4: [101, 104]}

    def test_overlap_on_another_court_is_an_error(self):
        busy = _match(7, 1, 3, status=STATUS_ON_COURT, court_id=2)
        conflicts = find_conflicts({101, 102}, [busy], [], self.resolved, 15, NOW)
        assert len(conflicts) == 1
        c = conflicts[0]
        assert (c.conflict_type, c.severity) == (CONFLICT_PLAYER_OVERLAP, SEVERITY_ERROR)
        assert (c.participant_id, c.conflicting_match_id, c.conflicting_court_id) == (101, 7, 2)

    def test_rest_window_warning_reports_remaining_minutes(self):
        recent = _match(8, 4, 3, ended_at=NOW - timedelta(minutes=10))
        conflicts = find_conflicts({101, 102}, [], [recent], self.resolved, 15, NOW)
        assert len(conflicts) == 1
        c = conflicts[0]
        assert (c.conflict_type, c.severity) == (CONFLICT_REST_VIOLATION, SEVERITY_WARNING)
        assert c.participant_id == 101
        assert c.remaining_rest_minutes == 5

    def test_latest_finish_counts(self):
        older = _match(8, 1, 3, ended_at=NOW - timedelta(minutes=14))
        newer = _match(9, 1, 3, ended_at=NOW - timedelta(minutes=2))
        conflicts = find_conflicts({101}, [], [older, newer], self.resolved, 15, NOW)
        assert [(c.conflicting_match_id, c.remaining_rest_minutes) for c in conflicts] == [(9, 13)]

    def test_rest_window_elapsed(self):
        recent = _match(8, 1, 3, ended_at=NOW - timedelta(minutes=15))
        assert find_conflicts({101}, [], [recent], self.resolved, 15, NOW) == []

    def test_uninvolved_participants_are_ignored(self):
        busy = _match(7, 3, 3, status=STATUS_ON_COURT, court_id=2)
        assert find_conflicts({101, 102}, [busy], [], self.resolved, 15, NOW) == []


# ============================================================================
# DB-backed detection
# ============================================================================


def test_doubles_entries_resolve_through_team_members(session: Session):
    tournament = make_tournament(session)
    division, entries = make_doubles_division(session, tournament, 2)
    match = generate_round_1(session, division.id).matches[0]

    resolved = resolve_participants(session, [match])

    assert set(resolved) == {entries[0].id, entries[1].id}
    assert all(len(members) == 2 for members in resolved.values())


def _shared_player_setup(session: Session):
    """A singles player who also plays in a doubles pair of the same tournament."""
    tournament = make_tournament(session)
    singles, singles_entries = make_singles_division(session, tournament, 2)
    doubles, _ = make_doubles_division(session, tournament, 0)

    extras = []
    for name in ("Partner", "Rival A", "Rival B"):
        p = Participant(tournament_id=tournament.id, display_name=name)
        session.add(p)
        session.commit()
        session.refresh(p)
        extras.append(p)
    shared_player = singles_entries[0].participant_id
    team_one = create_team(session, doubles.id, "Shared", [shared_player, extras[0].id])
    team_two = create_team(session, doubles.id, "Rivals", [extras[1].id, extras[2].id])
    register_entry(session, doubles.id, team_id=team_one.id, seed=1)
    register_entry(session, doubles.id, team_id=team_two.id, seed=2)

    singles_match = generate_round_1(session, singles.id).matches[0]
    doubles_match = generate_round_1(session, doubles.id).matches[0]
    return tournament, shared_player, singles_match, doubles_match


def test_player_on_another_court_blocks(session: Session):
    tournament, shared_player, singles_match, doubles_match = _shared_player_setup(session)
    court_one, court_two = make_courts(session, tournament)
    mark_ready(session, singles_match.id)
    assert assign_match_to_court(session, singles_match.id, court_one.id).assigned
    mark_ready(session, doubles_match.id)

    report = detect_conflicts(session, doubles_match, court_two.id)

    assert report.blocked
    assert not report.needs_override
    assert [(c.participant_id, c.conflicting_match_id, c.conflicting_court_id) for c in report.errors] == [
        (shared_player, singles_match.id, court_one.id)
    ]
    assert "C1" in report.errors[0].message


def test_recent_finish_warns_with_remaining_rest(session: Session):
    tournament = make_tournament(session, rest_window_minutes=15)
    first, entries = make_singles_division(session, tournament, 2, name="Morning")
    court = make_courts(session, tournament)[0]
    finished = play_match(session, generate_round_1(session, first.id).matches[0], court, [[21, 15], [21, 18]])

    # Same two players meet again in a second singles division
    second = Division(tournament_id=tournament.id, name="Afternoon", play_mode=PLAY_MODE_SINGLES, swiss_rounds=3)
    session.add(second)
    session.commit()
    session.refresh(second)
    for seed, entry in enumerate(entries, start=1):
        register_entry(session, second.id, participant_id=entry.participant_id, seed=seed)
    rematch = mark_ready(session, generate_round_1(session, second.id).matches[0].id)

    report = detect_conflicts(session, rematch, court.id, now=finished.ended_at + timedelta(minutes=10))
    assert not report.blocked
    assert report.needs_override
    assert {c.participant_id for c in report.warnings} == {e.participant_id for e in entries}
    assert {c.remaining_rest_minutes for c in report.warnings} == {5}
    assert all(c.conflicting_match_id == finished.id for c in report.warnings)

    later = detect_conflicts(session, rematch, court.id, now=finished.ended_at + timedelta(minutes=16))
    assert later.conflicts == []


def test_bye_does_not_start_rest(session: Session):
    tournament = make_tournament(session)
    division, entries = make_singles_division(session, tournament, 3)
    court = make_courts(session, tournament)[0]
    round_one = generate_round_1(session, division.id)
    bye = [m for m in round_one.matches if m.side_b_entry_id is None][0]
    assert bye.ended_at is None

    assert fetch_recent_completed_matches(session, [division.id], datetime.utcnow() - timedelta(hours=1)) == []

    match = mark_ready(session, [m for m in round_one.matches if m.side_b_entry_id is not None][0].id)
    assert detect_conflicts(session, match, court.id).conflicts == []
