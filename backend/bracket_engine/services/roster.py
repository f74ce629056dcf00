"""
Division roster: teams and entries.

Entries registered after round 1 has been generated are staged as late_add
and join the next pairing only; once the knockout phase begins the roster is
closed. Withdrawal is a status change, never a delete, so past matches keep
their references.
"""
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from bracket_engine.exceptions import CapacityError, ConsistencyError, ValidationError
from bracket_engine.models.division import PLAY_MODE_DOUBLES, PLAY_MODE_SINGLES, Division
from bracket_engine.models.draw_state import DRAW_NOT_STARTED, DRAW_SWISS, DrawState
from bracket_engine.models.entry import ENTRY_ACTIVE, ENTRY_LATE_ADD, ENTRY_WITHDRAWN, Entry
from bracket_engine.models.participant import Participant
from bracket_engine.models.team import Team, TeamMember
from bracket_engine.utils.queries import get_or_404

logger = logging.getLogger(__name__)

TEAM_SIZE = 2


def _draw_phase(session: Session, division_id: int) -> str:
    state = session.exec(select(DrawState).where(DrawState.division_id == division_id)).first()
    return state.phase if state else DRAW_NOT_STARTED


def create_team(session: Session, division_id: int, name: str, participant_ids: List[int]) -> Team:
    division = get_or_404(session, Division, division_id, "Division")
    if division.play_mode != PLAY_MODE_DOUBLES:
        raise ValidationError("Teams can only be created in doubles divisions")
    if len(set(participant_ids)) != TEAM_SIZE:
        raise ValidationError(f"A team needs exactly {TEAM_SIZE} different participants")
    for participant_id in participant_ids:
        participant = get_or_404(session, Participant, participant_id, "Participant")
        if participant.tournament_id != division.tournament_id:
            raise ValidationError(f"Participant {participant_id} belongs to a different tournament")

    try:
        team = Team(division_id=division_id, name=name.strip() or "Team")
        session.add(team)
        session.flush()
        for participant_id in participant_ids:
            session.add(TeamMember(team_id=team.id, participant_id=participant_id))
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(team)
    return team


def register_entry(
    session: Session,
    division_id: int,
    participant_id: Optional[int] = None,
    team_id: Optional[int] = None,
    seed: Optional[int] = None,
) -> Entry:
    """
    Add a singles (participant) or doubles (team) entry to a division.

    Raises:
        ValidationError: wrong kind of competitor, bad seed, roster closed
        CapacityError: division draw_size reached
        ConsistencyError: duplicate competitor or seed
    """
    division = get_or_404(session, Division, division_id, "Division")
    if (participant_id is None) == (team_id is None):
        raise ValidationError("An entry references exactly one of participant_id or team_id")

    if division.play_mode == PLAY_MODE_SINGLES:
        if participant_id is None:
            raise ValidationError("Singles divisions take participant entries")
        participant = get_or_404(session, Participant, participant_id, "Participant")
        if participant.tournament_id != division.tournament_id:
            raise ValidationError(f"Participant {participant_id} belongs to a different tournament")
        duplicate = select(Entry).where(Entry.division_id == division_id, Entry.participant_id == participant_id)
    else:
        if team_id is None:
            raise ValidationError("Doubles divisions take team entries")
        team = get_or_404(session, Team, team_id, "Team")
        if team.division_id != division_id:
            raise ValidationError(f"Team {team_id} belongs to a different division")
        duplicate = select(Entry).where(Entry.division_id == division_id, Entry.team_id == team_id)

    if seed is not None and seed < 1:
        raise ValidationError("Seed must be >= 1")
    if session.exec(duplicate).first():
        raise ConsistencyError("Competitor is already entered in this division")

    phase = _draw_phase(session, division_id)
    if phase not in (DRAW_NOT_STARTED, DRAW_SWISS):
        raise ValidationError("Entries are closed once the knockout phase has started")

    if division.draw_size is not None:
        current = session.exec(
            select(func.count(Entry.id)).where(Entry.division_id == division_id, Entry.status != ENTRY_WITHDRAWN)
        ).one()
        if current >= division.draw_size:
            raise CapacityError(f"Division {division.name} is full ({division.draw_size} entries)")

    status = ENTRY_LATE_ADD if phase == DRAW_SWISS else ENTRY_ACTIVE
    entry = Entry(division_id=division_id, participant_id=participant_id, team_id=team_id, seed=seed, status=status)
    session.add(entry)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConsistencyError(f"Seed {seed} is already taken in this division")
    session.refresh(entry)
    if status == ENTRY_LATE_ADD:
        logger.info(f"Division {division_id}: late entry {entry.id} staged for the next round")
    return entry


def withdraw_entry(session: Session, entry_id: int) -> Entry:
    """Withdrawn entries are skipped by every later pairing; their results stand."""
    entry = get_or_404(session, Entry, entry_id, "Entry")
    if entry.status == ENTRY_WITHDRAWN:
        return entry
    entry.status = ENTRY_WITHDRAWN
    session.add(entry)
    session.commit()
    session.refresh(entry)
    logger.info(f"Entry {entry_id} withdrawn from division {entry.division_id}")
    return entry


def set_entry_seed(session: Session, entry_id: int, seed: Optional[int]) -> Entry:
    entry = get_or_404(session, Entry, entry_id, "Entry")
    if _draw_phase(session, entry.division_id) != DRAW_NOT_STARTED:
        raise ValidationError("Seeds are fixed once the draw has been generated")
    if seed is not None and seed < 1:
        raise ValidationError("Seed must be >= 1")
    entry.seed = seed
    session.add(entry)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConsistencyError(f"Seed {seed} is already taken in this division")
    session.refresh(entry)
    return entry
