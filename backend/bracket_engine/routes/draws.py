"""
Division draw lifecycle: Swiss round generation, standings, knockout bracket.
"""
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from bracket_engine.database import get_session
from bracket_engine.models.division import Division
from bracket_engine.models.draw_state import DRAW_COMPLETED, DRAW_KNOCKOUT, DRAW_NOT_STARTED
from bracket_engine.models.match import PHASE_KNOCKOUT, PHASE_SWISS
from bracket_engine.routes.runtime import ActorRequest, MatchResponse
from bracket_engine.services.knockout_bracket import build_knockout_bracket, get_knockout_matches, knockout_round_label
from bracket_engine.services.standings_calculator import calculate_standings, get_stored_standings
from bracket_engine.services.swiss_pairing import (
    RoundResult,
    generate_next_round,
    generate_round_1,
    get_draw_state,
    is_round_complete,
    reset_draw,
)
from bracket_engine.utils.queries import MatchFilter, fetch_matches, get_or_404

router = APIRouter()


class DrawStateResponse(BaseModel):
    division_id: int
    phase: str
    current_round: int
    total_rounds: int
    qualifier_count: int
    knockout_rounds: Optional[int] = None
    bye_history: List[int] = []
    current_round_complete: bool = False
    updated_at: Optional[datetime] = None


class RoundResponse(BaseModel):
    division_id: int
    round_number: int
    bye_entry_id: Optional[int] = None
    rematches: List[List[int]] = []
    matches: List[MatchResponse]


class NextRoundRequest(BaseModel):
    through_round: Optional[int] = None
    actor: Optional[str] = None


class StandingResponse(BaseModel):
    entry_id: int
    rank: int
    wins: int
    losses: int
    points_for: int
    points_against: int
    point_diff: int
    tiebreak_json: Dict


class KnockoutMatchResponse(MatchResponse):
    round_label: str


class ResetResponse(BaseModel):
    division_id: int
    deleted_matches: int


def _round_response(result: RoundResult) -> RoundResponse:
    return RoundResponse(
        division_id=result.division_id,
        round_number=result.round_number,
        bye_entry_id=result.bye_entry_id,
        rematches=[list(p) for p in result.rematches],
        matches=[MatchResponse.model_validate(m) for m in result.matches],
    )


@router.get("/divisions/{division_id}/draw", response_model=DrawStateResponse)
def get_draw(division_id: int, session: Session = Depends(get_session)):
    """Current stage of the division"""
    division = get_or_404(session, Division, division_id, "Division")
    state = get_draw_state(session, division_id)
    if state is None:
        return DrawStateResponse(
            division_id=division_id,
            phase=DRAW_NOT_STARTED,
            current_round=0,
            total_rounds=division.swiss_rounds,
            qualifier_count=division.swiss_qualifiers,
        )
    phase_of_round = PHASE_KNOCKOUT if state.phase in (DRAW_KNOCKOUT, DRAW_COMPLETED) else PHASE_SWISS
    return DrawStateResponse(
        division_id=division_id,
        phase=state.phase,
        current_round=state.current_round,
        total_rounds=state.total_rounds,
        qualifier_count=state.qualifier_count,
        knockout_rounds=state.knockout_rounds,
        bye_history=list(state.bye_history or []),
        current_round_complete=state.current_round > 0
        and is_round_complete(session, division_id, state.current_round, phase=phase_of_round),
        updated_at=state.updated_at,
    )


@router.post("/divisions/{division_id}/draw", response_model=RoundResponse, status_code=201)
def create_draw(division_id: int, payload: ActorRequest = ActorRequest(), session: Session = Depends(get_session)):
    """Seed the division and generate round 1"""
    return _round_response(generate_round_1(session, division_id, actor=payload.actor))


@router.delete("/divisions/{division_id}/draw", response_model=ResetResponse)
def delete_draw(division_id: int, session: Session = Depends(get_session)):
    """Reset the draw; refused once any match has been played"""
    deleted = reset_draw(session, division_id)
    return ResetResponse(division_id=division_id, deleted_matches=deleted)


@router.post("/divisions/{division_id}/rounds/next", response_model=RoundResponse, status_code=201)
def next_round(division_id: int, payload: NextRoundRequest = NextRoundRequest(), session: Session = Depends(get_session)):
    return _round_response(
        generate_next_round(session, division_id, through_round=payload.through_round, actor=payload.actor)
    )


@router.get("/divisions/{division_id}/rounds/{round_number}", response_model=List[MatchResponse])
def list_round(division_id: int, round_number: int, session: Session = Depends(get_session)):
    get_or_404(session, Division, division_id, "Division")
    return fetch_matches(session, MatchFilter(division_id=division_id, phase=PHASE_SWISS, round_number=round_number))


@router.get("/divisions/{division_id}/standings", response_model=List[StandingResponse])
def get_standings(
    division_id: int,
    through_round: Optional[int] = Query(None, ge=0),
    stored: bool = Query(False, description="Return the persisted snapshot instead of recomputing"),
    session: Session = Depends(get_session),
):
    """Ranked Swiss standings through a round (defaults to the current round)"""
    get_or_404(session, Division, division_id, "Division")
    if through_round is None:
        state = get_draw_state(session, division_id)
        through_round = state.current_round if state else 0

    if stored:
        return [
            StandingResponse(
                entry_id=s.entry_id,
                rank=s.rank,
                wins=s.wins,
                losses=s.losses,
                points_for=s.points_for,
                points_against=s.points_against,
                point_diff=s.points_for - s.points_against,
                tiebreak_json=s.tiebreak_json,
            )
            for s in get_stored_standings(session, division_id, through_round)
        ]

    return [
        StandingResponse(
            entry_id=r.entry_id,
            rank=r.rank,
            wins=r.wins,
            losses=r.losses,
            points_for=r.points_for,
            points_against=r.points_against,
            point_diff=r.point_diff,
            tiebreak_json=r.tiebreak_json,
        )
        for r in calculate_standings(session, division_id, through_round)
    ]


def _knockout_response(session: Session, division_id: int) -> List[KnockoutMatchResponse]:
    matches = get_knockout_matches(session, division_id)
    if not matches:
        return []
    total = max(m.round_number for m in matches)
    return [
        KnockoutMatchResponse(
            **MatchResponse.model_validate(m).model_dump(),
            round_label=knockout_round_label(m.round_number, total),
        )
        for m in matches
    ]


@router.get("/divisions/{division_id}/knockout", response_model=List[KnockoutMatchResponse])
def get_knockout(division_id: int, session: Session = Depends(get_session)):
    return _knockout_response(session, division_id)


@router.post("/divisions/{division_id}/knockout", response_model=List[KnockoutMatchResponse], status_code=201)
def create_knockout(division_id: int, payload: ActorRequest = ActorRequest(), session: Session = Depends(get_session)):
    """Build the knockout bracket from the final Swiss standings"""
    build_knockout_bracket(session, division_id, actor=payload.actor)
    return _knockout_response(session, division_id)
