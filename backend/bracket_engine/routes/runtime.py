"""
Match runtime: status moves, results, referee sign-off and score edits.
All state rules live in the services; these handlers only translate HTTP.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from bracket_engine.database import get_session
from bracket_engine.models.match import Match
from bracket_engine.services.court_assignment import mark_ready, start_match
from bracket_engine.services.match_finalizer import (
    approve_result,
    complete_match,
    edit_score,
    record_walkover,
    reject_result,
    submit_result,
)

router = APIRouter()


class MatchResponse(BaseModel):
    id: int
    division_id: int
    phase: str
    round_number: int
    sequence: int
    side_a_entry_id: Optional[int] = None
    side_b_entry_id: Optional[int] = None
    status: str
    winner_side: Optional[str] = None
    score_json: Optional[Dict[str, Any]] = None
    pending_result_json: Optional[Dict[str, Any]] = None
    court_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    next_match_id: Optional[int] = None
    next_match_side: Optional[str] = None

    class Config:
        from_attributes = True


class ActorRequest(BaseModel):
    actor: Optional[str] = None


class ScoreRequest(BaseModel):
    # [[21, 15], [21, 18]] or "21-15, 21-18"
    games: Any
    winner_side: Optional[str] = None
    actor: Optional[str] = None


class WalkoverRequest(BaseModel):
    winner_side: str
    reason: Optional[str] = None
    actor: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None
    actor: Optional[str] = None


@router.get("/matches/{match_id}", response_model=MatchResponse)
def get_match(match_id: int, session: Session = Depends(get_session)):
    match = session.get(Match, match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


@router.post("/matches/{match_id}/ready", response_model=MatchResponse)
def match_ready(match_id: int, payload: ActorRequest = ActorRequest(), session: Session = Depends(get_session)):
    return mark_ready(session, match_id, actor=payload.actor)


@router.post("/matches/{match_id}/start", response_model=MatchResponse)
def match_start(match_id: int, payload: ActorRequest = ActorRequest(), session: Session = Depends(get_session)):
    return start_match(session, match_id, actor=payload.actor)


@router.post("/matches/{match_id}/complete", response_model=MatchResponse)
def match_complete(match_id: int, payload: ScoreRequest, session: Session = Depends(get_session)):
    """TD records a played result directly"""
    return complete_match(session, match_id, payload.games, winner_side=payload.winner_side, actor=payload.actor)


@router.post("/matches/{match_id}/walkover", response_model=MatchResponse)
def match_walkover(match_id: int, payload: WalkoverRequest, session: Session = Depends(get_session)):
    return record_walkover(session, match_id, payload.winner_side, actor=payload.actor, reason=payload.reason)


@router.post("/matches/{match_id}/submit", response_model=MatchResponse)
def match_submit(match_id: int, payload: ScoreRequest, session: Session = Depends(get_session)):
    """Referee submits a result for TD sign-off"""
    return submit_result(session, match_id, payload.games, winner_side=payload.winner_side, actor=payload.actor)


@router.post("/matches/{match_id}/approve", response_model=MatchResponse)
def match_approve(match_id: int, payload: ActorRequest = ActorRequest(), session: Session = Depends(get_session)):
    return approve_result(session, match_id, actor=payload.actor)


@router.post("/matches/{match_id}/reject", response_model=MatchResponse)
def match_reject(match_id: int, payload: RejectRequest = RejectRequest(), session: Session = Depends(get_session)):
    return reject_result(session, match_id, actor=payload.actor, reason=payload.reason)


@router.put("/matches/{match_id}/score", response_model=MatchResponse)
def match_edit_score(match_id: int, payload: ScoreRequest, session: Session = Depends(get_session)):
    """Correct the score of a completed match"""
    return edit_score(session, match_id, payload.games, winner_side=payload.winner_side, actor=payload.actor)
