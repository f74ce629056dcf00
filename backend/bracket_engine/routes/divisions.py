from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from bracket_engine.database import get_session
from bracket_engine.models.division import PLAY_MODE_DOUBLES, PLAY_MODE_SINGLES, Division
from bracket_engine.models.draw_state import DRAW_NOT_STARTED, DrawState
from bracket_engine.models.entry import ENTRY_WITHDRAWN, Entry
from bracket_engine.models.team import Team
from bracket_engine.models.tournament import Tournament
from bracket_engine.services.roster import create_team, register_entry, set_entry_seed, withdraw_entry
from bracket_engine.services.swiss_pairing import recommended_swiss_rounds, validate_swiss_config
from bracket_engine.utils.queries import fetch_entries, fetch_team_members

router = APIRouter()


class DivisionCreate(BaseModel):
    name: str
    play_mode: str = PLAY_MODE_SINGLES
    swiss_rounds: int = 5
    swiss_qualifiers: int = 0
    draw_size: Optional[int] = None

    @field_validator("play_mode")
    @classmethod
    def validate_play_mode(cls, v):
        if v not in (PLAY_MODE_SINGLES, PLAY_MODE_DOUBLES):
            raise ValueError(f"play_mode must be '{PLAY_MODE_SINGLES}' or '{PLAY_MODE_DOUBLES}'")
        return v


class DivisionUpdate(BaseModel):
    name: Optional[str] = None
    swiss_rounds: Optional[int] = None
    swiss_qualifiers: Optional[int] = None
    draw_size: Optional[int] = None


class DivisionResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    play_mode: str
    swiss_rounds: int
    swiss_qualifiers: int
    draw_size: Optional[int] = None
    entry_count: int = 0
    recommended_swiss_rounds: int = 3
    created_at: datetime


class TeamCreate(BaseModel):
    name: str
    participant_ids: List[int]


class TeamResponse(BaseModel):
    id: int
    division_id: int
    name: str
    participant_ids: List[int]


class EntryCreate(BaseModel):
    participant_id: Optional[int] = None
    team_id: Optional[int] = None
    seed: Optional[int] = None


class EntryUpdate(BaseModel):
    status: Optional[str] = None
    seed: Optional[int] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v != ENTRY_WITHDRAWN:
            raise ValueError(f"status can only be changed to '{ENTRY_WITHDRAWN}'")
        return v


class EntryResponse(BaseModel):
    id: int
    division_id: int
    participant_id: Optional[int] = None
    team_id: Optional[int] = None
    seed: Optional[int] = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


def _active_entry_count(session: Session, division_id: int) -> int:
    return session.exec(
        select(func.count(Entry.id)).where(Entry.division_id == division_id, Entry.status != ENTRY_WITHDRAWN)
    ).one()


def _division_response(session: Session, division: Division) -> DivisionResponse:
    count = _active_entry_count(session, division.id)
    return DivisionResponse(
        id=division.id,
        tournament_id=division.tournament_id,
        name=division.name,
        play_mode=division.play_mode,
        swiss_rounds=division.swiss_rounds,
        swiss_qualifiers=division.swiss_qualifiers,
        draw_size=division.draw_size,
        entry_count=count,
        recommended_swiss_rounds=recommended_swiss_rounds(count),
        created_at=division.created_at,
    )


def _get_division(session: Session, division_id: int) -> Division:
    division = session.get(Division, division_id)
    if not division:
        raise HTTPException(status_code=404, detail="Division not found")
    return division


@router.get("/tournaments/{tournament_id}/divisions", response_model=List[DivisionResponse])
def list_divisions(tournament_id: int, session: Session = Depends(get_session)):
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    divisions = session.exec(select(Division).where(Division.tournament_id == tournament_id).order_by(Division.id)).all()
    return [_division_response(session, d) for d in divisions]


@router.post("/tournaments/{tournament_id}/divisions", response_model=DivisionResponse, status_code=201)
def create_division(tournament_id: int, division_data: DivisionCreate, session: Session = Depends(get_session)):
    """Create a division; Swiss rounds and qualifier count are validated up front."""
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail="Tournament not found")
    capacity = division_data.draw_size if division_data.draw_size is not None else division_data.swiss_qualifiers
    validate_swiss_config(division_data.swiss_rounds, division_data.swiss_qualifiers, capacity)

    division = Division(tournament_id=tournament_id, **division_data.model_dump())
    session.add(division)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Division '{division_data.name}' already exists")
    session.refresh(division)
    return _division_response(session, division)


@router.get("/divisions/{division_id}", response_model=DivisionResponse)
def get_division(division_id: int, session: Session = Depends(get_session)):
    return _division_response(session, _get_division(session, division_id))


@router.put("/divisions/{division_id}", response_model=DivisionResponse)
def update_division(division_id: int, division_data: DivisionUpdate, session: Session = Depends(get_session)):
    """Change configuration. Locked once the draw has been generated."""
    division = _get_division(session, division_id)
    state = session.exec(select(DrawState).where(DrawState.division_id == division_id)).first()
    if state is not None and state.phase != DRAW_NOT_STARTED:
        raise HTTPException(status_code=409, detail="Division configuration is locked once the draw is generated")

    update_data = division_data.model_dump(exclude_unset=True)
    rounds = update_data.get("swiss_rounds", division.swiss_rounds)
    qualifiers = update_data.get("swiss_qualifiers", division.swiss_qualifiers)
    draw_size = update_data.get("draw_size", division.draw_size)
    validate_swiss_config(rounds, qualifiers, draw_size if draw_size is not None else qualifiers)

    for field, value in update_data.items():
        setattr(division, field, value)
    session.add(division)
    session.commit()
    session.refresh(division)
    return _division_response(session, division)


# ============================================================================
# Teams
# ============================================================================


@router.get("/divisions/{division_id}/teams", response_model=List[TeamResponse])
def list_teams(division_id: int, session: Session = Depends(get_session)):
    _get_division(session, division_id)
    teams = session.exec(select(Team).where(Team.division_id == division_id).order_by(Team.id)).all()
    members = fetch_team_members(session, [t.id for t in teams])
    return [
        TeamResponse(id=t.id, division_id=t.division_id, name=t.name, participant_ids=members.get(t.id, []))
        for t in teams
    ]


@router.post("/divisions/{division_id}/teams", response_model=TeamResponse, status_code=201)
def add_team(division_id: int, team_data: TeamCreate, session: Session = Depends(get_session)):
    team = create_team(session, division_id, team_data.name, team_data.participant_ids)
    members = fetch_team_members(session, [team.id])
    return TeamResponse(id=team.id, division_id=team.division_id, name=team.name, participant_ids=members.get(team.id, []))


# ============================================================================
# Entries
# ============================================================================


@router.get("/divisions/{division_id}/entries", response_model=List[EntryResponse])
def list_entries(division_id: int, session: Session = Depends(get_session)):
    """Entries in arrival order"""
    _get_division(session, division_id)
    return fetch_entries(session, division_id)


@router.post("/divisions/{division_id}/entries", response_model=EntryResponse, status_code=201)
def add_entry(division_id: int, entry_data: EntryCreate, session: Session = Depends(get_session)):
    return register_entry(
        session,
        division_id,
        participant_id=entry_data.participant_id,
        team_id=entry_data.team_id,
        seed=entry_data.seed,
    )


@router.patch("/entries/{entry_id}", response_model=EntryResponse)
def update_entry(entry_id: int, entry_data: EntryUpdate, session: Session = Depends(get_session)):
    """Withdraw an entry or change its seed before the draw"""
    update_data = entry_data.model_dump(exclude_unset=True)
    entry = session.get(Entry, entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Entry not found")
    if "seed" in update_data:
        entry = set_entry_seed(session, entry_id, update_data["seed"])
    if update_data.get("status") == ENTRY_WITHDRAWN:
        entry = withdraw_entry(session, entry_id)
    return entry
