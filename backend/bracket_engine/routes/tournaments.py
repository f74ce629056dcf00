from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from bracket_engine.config import DEFAULT_REST_WINDOW_MINUTES
from bracket_engine.database import get_session
from bracket_engine.models.court import Court
from bracket_engine.models.participant import Participant
from bracket_engine.models.tournament import Tournament

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    venue: str
    timezone: str = "UTC"
    rest_window_minutes: int = DEFAULT_REST_WINDOW_MINUTES

    @field_validator("name", "venue")
    @classmethod
    def validate_required(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("rest_window_minutes")
    @classmethod
    def validate_rest_window(cls, v):
        if v < 0:
            raise ValueError("rest_window_minutes must be >= 0")
        return v


class TournamentUpdate(BaseModel):
    name: Optional[str] = None
    venue: Optional[str] = None
    timezone: Optional[str] = None
    rest_window_minutes: Optional[int] = None

    @field_validator("rest_window_minutes")
    @classmethod
    def validate_rest_window(cls, v):
        if v is not None and v < 0:
            raise ValueError("rest_window_minutes must be >= 0")
        return v


class TournamentResponse(BaseModel):
    id: int
    name: str
    venue: str
    timezone: str
    rest_window_minutes: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CourtCreate(BaseModel):
    name: str
    is_active: bool = True


class CourtUpdate(BaseModel):
    name: Optional[str] = None
    is_active: Optional[bool] = None


class CourtResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    is_active: bool
    current_match_id: Optional[int] = None

    class Config:
        from_attributes = True


class ParticipantCreate(BaseModel):
    display_name: str
    club: Optional[str] = None


class ParticipantResponse(BaseModel):
    id: int
    tournament_id: int
    display_name: str
    club: Optional[str] = None

    class Config:
        from_attributes = True


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.id)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    return _get_tournament(session, tournament_id)


@router.put("/tournaments/{tournament_id}", response_model=TournamentResponse)
def update_tournament(tournament_id: int, tournament_data: TournamentUpdate, session: Session = Depends(get_session)):
    """Update tournament settings. A new rest window applies to the next conflict check."""
    tournament = _get_tournament(session, tournament_id)
    for field, value in tournament_data.model_dump(exclude_unset=True).items():
        setattr(tournament, field, value)
    tournament.updated_at = datetime.utcnow()
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


# ============================================================================
# Courts
# ============================================================================


@router.get("/tournaments/{tournament_id}/courts", response_model=List[CourtResponse])
def list_courts(tournament_id: int, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    return session.exec(select(Court).where(Court.tournament_id == tournament_id).order_by(Court.id)).all()


@router.post("/tournaments/{tournament_id}/courts", response_model=CourtResponse, status_code=201)
def create_court(tournament_id: int, court_data: CourtCreate, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    name = court_data.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Court name is required")
    court = Court(tournament_id=tournament_id, name=name, is_active=court_data.is_active)
    session.add(court)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Court '{name}' already exists in this tournament")
    session.refresh(court)
    return court


@router.patch("/courts/{court_id}", response_model=CourtResponse)
def update_court(court_id: int, court_data: CourtUpdate, session: Session = Depends(get_session)):
    """Rename or (de)activate a court. An occupied court cannot be deactivated."""
    court = session.get(Court, court_id)
    if not court:
        raise HTTPException(status_code=404, detail="Court not found")
    update_data = court_data.model_dump(exclude_unset=True)
    if update_data.get("is_active") is False and court.current_match_id is not None:
        raise HTTPException(status_code=409, detail=f"Court {court.name} is in use by match {court.current_match_id}")
    for field, value in update_data.items():
        setattr(court, field, value)
    court.updated_at = datetime.utcnow()
    session.add(court)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="Court name already exists in this tournament")
    session.refresh(court)
    return court


# ============================================================================
# Participants
# ============================================================================


@router.get("/tournaments/{tournament_id}/participants", response_model=List[ParticipantResponse])
def list_participants(tournament_id: int, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    return session.exec(
        select(Participant).where(Participant.tournament_id == tournament_id).order_by(Participant.id)
    ).all()


@router.post("/tournaments/{tournament_id}/participants", response_model=ParticipantResponse, status_code=201)
def create_participant(tournament_id: int, participant_data: ParticipantCreate, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    display_name = participant_data.display_name.strip()
    if not display_name:
        raise HTTPException(status_code=422, detail="display_name is required")
    participant = Participant(tournament_id=tournament_id, display_name=display_name, club=participant_data.club)
    session.add(participant)
    session.commit()
    session.refresh(participant)
    return participant
