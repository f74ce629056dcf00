"""
Storage collaborators used by the engine services.

Every function takes the caller's Session and never commits: the calling
operation owns the transaction so its writes land (or roll back) together.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlmodel import Session, select

from bracket_engine.exceptions import NotFoundError
from bracket_engine.models.audit_event import AuditEvent
from bracket_engine.models.division import Division
from bracket_engine.models.entry import Entry
from bracket_engine.models.match import TERMINAL_STATUSES, Match
from bracket_engine.models.team import TeamMember
from bracket_engine.models.tournament import Tournament

logger = logging.getLogger(__name__)


@dataclass
class MatchFilter:
    """Criteria for fetch_matches. Unset fields do not filter."""

    division_id: Optional[int] = None
    division_ids: Optional[Sequence[int]] = None
    phase: Optional[str] = None
    round_number: Optional[int] = None
    max_round: Optional[int] = None
    statuses: Optional[Sequence[str]] = None
    match_ids: Optional[Sequence[int]] = None
    exclude_match_id: Optional[int] = None
    has_court: Optional[bool] = None


def get_or_404(session: Session, model, obj_id: int, label: str):
    obj = session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} {obj_id} not found")
    return obj


def fetch_entries(session: Session, division_id: int, statuses: Optional[Iterable[str]] = None) -> List[Entry]:
    """Entries of a division in arrival order (created_at, id)."""
    query = select(Entry).where(Entry.division_id == division_id)
    if statuses is not None:
        query = query.where(Entry.status.in_(list(statuses)))
    return list(session.exec(query.order_by(Entry.created_at, Entry.id)).all())


def fetch_matches(session: Session, match_filter: MatchFilter) -> List[Match]:
    """Matches matching the filter, ordered by phase, round and sequence."""
    query = select(Match)
    f = match_filter
    if f.division_id is not None:
        query = query.where(Match.division_id == f.division_id)
    if f.division_ids is not None:
        query = query.where(Match.division_id.in_(list(f.division_ids)))
    if f.phase is not None:
        query = query.where(Match.phase == f.phase)
    if f.round_number is not None:
        query = query.where(Match.round_number == f.round_number)
    if f.max_round is not None:
        query = query.where(Match.round_number <= f.max_round)
    if f.statuses is not None:
        query = query.where(Match.status.in_(list(f.statuses)))
    if f.match_ids is not None:
        query = query.where(Match.id.in_(list(f.match_ids)))
    if f.exclude_match_id is not None:
        query = query.where(Match.id != f.exclude_match_id)
    if f.has_court is True:
        query = query.where(Match.court_id.is_not(None))
    elif f.has_court is False:
        query = query.where(Match.court_id.is_(None))

    query = query.order_by(Match.division_id, Match.phase, Match.round_number, Match.sequence)
    return list(session.exec(query).all())


def persist_matches(session: Session, matches: List[Match]) -> List[Match]:
    """Stage a batch of inserts/updates and flush so new rows get ids.

    Part of the caller's transaction; nothing is visible to others until the
    caller commits.
    """
    for match in matches:
        session.add(match)
    session.flush()
    return matches


def fetch_team_members(session: Session, team_ids: Iterable[int]) -> Dict[int, List[int]]:
    """Resolve many teams to their participant ids in one query."""
    ids = sorted(set(team_ids))
    if not ids:
        return {}
    rows = session.exec(
        select(TeamMember).where(TeamMember.team_id.in_(ids)).order_by(TeamMember.team_id, TeamMember.participant_id)
    ).all()
    members: Dict[int, List[int]] = {}
    for row in rows:
        members.setdefault(row.team_id, []).append(row.participant_id)
    return members


def fetch_recent_completed_matches(
    session: Session,
    division_ids: Sequence[int],
    since: datetime,
    exclude_match_id: Optional[int] = None,
) -> List[Match]:
    """Completed/walkover matches that ended at or after *since*.

    Only the rest window is read, never the full match history.
    """
    if not division_ids:
        return []
    query = select(Match).where(
        Match.division_id.in_(list(division_ids)),
        Match.status.in_(list(TERMINAL_STATUSES)),
        Match.ended_at.is_not(None),
        Match.ended_at >= since,
    )
    if exclude_match_id is not None:
        query = query.where(Match.id != exclude_match_id)
    return list(session.exec(query.order_by(Match.ended_at)).all())


def fetch_division_ids(session: Session, tournament_id: int) -> List[int]:
    return list(session.exec(select(Division.id).where(Division.tournament_id == tournament_id)).all())


def get_rest_window_minutes(session: Session, tournament_id: int) -> int:
    tournament = get_or_404(session, Tournament, tournament_id, "Tournament")
    return tournament.rest_window_minutes


def emit_audit_event(
    session: Session,
    event_type: str,
    tournament_id: Optional[int] = None,
    division_id: Optional[int] = None,
    match_id: Optional[int] = None,
    actor: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditEvent:
    """Append an audit record to the caller's transaction."""
    event = AuditEvent(
        tournament_id=tournament_id,
        division_id=division_id,
        match_id=match_id,
        event_type=event_type,
        actor=actor,
        payload_json=payload or {},
    )
    session.add(event)
    logger.debug(f"audit {event_type} match={match_id} actor={actor}")
    return event
