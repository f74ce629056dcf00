"""
Court assignment conflict detection.

Checks performed when a ready match is about to go onto a court:
- player_overlap (error): a participant of the match is already in an active
  match on a different court of the same tournament. Blocks assignment.
- rest_violation (warning): a participant's latest completed or walkover match
  ended less than the tournament rest window ago. Assignment may proceed only
  with a recorded override reason.

Participants are resolved for every match under consideration with one entry
query and one team-member query. Only matches that ended inside the rest
window are read, never the full history. Detection never raises for
conflicts; it returns them for the caller to act on.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from sqlmodel import Session, select

from bracket_engine.models.court import Court
from bracket_engine.models.division import Division
from bracket_engine.models.entry import Entry
from bracket_engine.models.match import ACTIVE_COURT_STATUSES, Match
from bracket_engine.models.participant import Participant
from bracket_engine.utils.queries import (
    MatchFilter,
    fetch_division_ids,
    fetch_matches,
    fetch_recent_completed_matches,
    fetch_team_members,
    get_or_404,
    get_rest_window_minutes,
)

SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"

CONFLICT_PLAYER_OVERLAP = "player_overlap"
CONFLICT_REST_VIOLATION = "rest_violation"


@dataclass
class Conflict:
    conflict_type: str
    severity: str
    participant_id: int
    conflicting_match_id: int
    message: str
    conflicting_court_id: Optional[int] = None
    remaining_rest_minutes: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "conflict_type": self.conflict_type,
            "severity": self.severity,
            "participant_id": self.participant_id,
            "conflicting_match_id": self.conflicting_match_id,
            "conflicting_court_id": self.conflicting_court_id,
            "remaining_rest_minutes": self.remaining_rest_minutes,
            "message": self.message,
        }


@dataclass
class ConflictReport:
    match_id: int
    court_id: int
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def errors(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.severity == SEVERITY_ERROR]

    @property
    def warnings(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.severity == SEVERITY_WARNING]

    @property
    def blocked(self) -> bool:
        return bool(self.errors)

    @property
    def needs_override(self) -> bool:
        return not self.blocked and bool(self.warnings)


def resolve_participants(session: Session, matches: Iterable[Match]) -> Dict[int, List[int]]:
    """
    Map every entry on the given matches to its participant ids.

    Singles entries resolve to their participant; doubles entries resolve
    through their team. Two queries in total regardless of match count.
    """
    entry_ids: Set[int] = set()
    for m in matches:
        for entry_id in (m.side_a_entry_id, m.side_b_entry_id):
            if entry_id is not None:
                entry_ids.add(entry_id)
    if not entry_ids:
        return {}

    entries = session.exec(select(Entry).where(Entry.id.in_(sorted(entry_ids)))).all()
    team_members = fetch_team_members(session, [e.team_id for e in entries if e.team_id is not None])

    resolved: Dict[int, List[int]] = {}
    for entry in entries:
        if entry.participant_id is not None:
            resolved[entry.id] = [entry.participant_id]
        else:
            resolved[entry.id] = team_members.get(entry.team_id, [])
    return resolved


def _match_participants(match: Match, resolved: Dict[int, List[int]]) -> Set[int]:
    people: Set[int] = set()
    for entry_id in (match.side_a_entry_id, match.side_b_entry_id):
        if entry_id is not None:
            people.update(resolved.get(entry_id, []))
    return people


def _names(session: Session, participant_ids: Iterable[int]) -> Dict[int, str]:
    ids = sorted(set(participant_ids))
    if not ids:
        return {}
    rows = session.exec(select(Participant).where(Participant.id.in_(ids))).all()
    return {p.id: p.display_name for p in rows}


def _court_names(session: Session, court_ids: Iterable[int]) -> Dict[int, str]:
    ids = sorted({c for c in court_ids if c is not None})
    if not ids:
        return {}
    rows = session.exec(select(Court).where(Court.id.in_(ids))).all()
    return {c.id: c.name for c in rows}


def find_conflicts(
    candidate_participants: Set[int],
    active_matches: List[Match],
    recent_matches: List[Match],
    resolved: Dict[int, List[int]],
    rest_window_minutes: int,
    now: datetime,
    names: Optional[Dict[int, str]] = None,
    court_names: Optional[Dict[int, str]] = None,
) -> List[Conflict]:
    """In-memory overlap and rest checks for an already-resolved candidate."""
    names = names or {}
    court_names = court_names or {}
    conflicts: List[Conflict] = []

    for other in active_matches:
        overlap = candidate_participants & _match_participants(other, resolved)
        for participant_id in sorted(overlap):
            court_label = court_names.get(other.court_id, f"court {other.court_id}")
            who = names.get(participant_id, f"Participant {participant_id}")
            conflicts.append(
                Conflict(
                    conflict_type=CONFLICT_PLAYER_OVERLAP,
                    severity=SEVERITY_ERROR,
                    participant_id=participant_id,
                    conflicting_match_id=other.id,
                    conflicting_court_id=other.court_id,
                    message=f"{who} is already in match {other.id} on {court_label}",
                )
            )

    # Latest finish per participant; recent_matches are ordered by ended_at
    last_finished: Dict[int, Match] = {}
    for other in recent_matches:
        if other.ended_at is None:
            continue
        for participant_id in candidate_participants & _match_participants(other, resolved):
            previous = last_finished.get(participant_id)
            if previous is None or other.ended_at >= previous.ended_at:
                last_finished[participant_id] = other

    for participant_id in sorted(last_finished):
        other = last_finished[participant_id]
        minutes_since = (now - other.ended_at).total_seconds() / 60
        if minutes_since >= rest_window_minutes:
            continue
        remaining = math.ceil(rest_window_minutes - minutes_since)
        who = names.get(participant_id, f"Participant {participant_id}")
        conflicts.append(
            Conflict(
                conflict_type=CONFLICT_REST_VIOLATION,
                severity=SEVERITY_WARNING,
                participant_id=participant_id,
                conflicting_match_id=other.id,
                conflicting_court_id=other.court_id,
                remaining_rest_minutes=remaining,
                message=(
                    f"{who} finished match {other.id} {int(minutes_since)} min ago; "
                    f"{remaining} min of the {rest_window_minutes} min rest window remaining"
                ),
            )
        )
    return conflicts


def detect_conflicts(session: Session, match: Match, court_id: int, now: Optional[datetime] = None) -> ConflictReport:
    """Conflicts that assigning *match* to *court_id* would cause right now."""
    now = now or datetime.utcnow()
    division = get_or_404(session, Division, match.division_id, "Division")
    division_ids = fetch_division_ids(session, division.tournament_id)
    window = get_rest_window_minutes(session, division.tournament_id)

    active = [
        m
        for m in fetch_matches(
            session,
            MatchFilter(
                division_ids=division_ids,
                statuses=ACTIVE_COURT_STATUSES,
                has_court=True,
                exclude_match_id=match.id,
            ),
        )
        if m.court_id != court_id
    ]
    recent = fetch_recent_completed_matches(
        session, division_ids, now - timedelta(minutes=window), exclude_match_id=match.id
    )

    resolved = resolve_participants(session, [match] + active + recent)
    candidate = _match_participants(match, resolved)
    conflicts = find_conflicts(
        candidate,
        active,
        recent,
        resolved,
        window,
        now,
        names=_names(session, candidate),
        court_names=_court_names(session, [m.court_id for m in active]),
    )
    return ConflictReport(match_id=match.id, court_id=court_id, conflicts=conflicts)
