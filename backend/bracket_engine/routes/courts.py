"""
Court desk: ready queue, conflict preview, assignment and clearing.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from bracket_engine.database import get_session
from bracket_engine.models.court import Court
from bracket_engine.models.match import Match
from bracket_engine.models.tournament import Tournament
from bracket_engine.routes.runtime import ActorRequest, MatchResponse
from bracket_engine.routes.tournaments import CourtResponse
from bracket_engine.services.conflict_detector import ConflictReport, detect_conflicts
from bracket_engine.services.court_assignment import assign_match_to_court, clear_court, list_ready_queue
from bracket_engine.utils.queries import get_or_404

router = APIRouter()


class ConflictItem(BaseModel):
    conflict_type: str
    severity: str
    participant_id: int
    conflicting_match_id: int
    conflicting_court_id: Optional[int] = None
    remaining_rest_minutes: Optional[int] = None
    message: str


class ConflictReportResponse(BaseModel):
    match_id: int
    court_id: int
    blocked: bool
    needs_override: bool
    conflicts: List[ConflictItem]


class AssignRequest(BaseModel):
    court_id: int
    override_reason: Optional[str] = None
    notes: Optional[str] = None
    actor: Optional[str] = None


class AssignResponse(BaseModel):
    assigned: bool
    requires_override: bool
    match: MatchResponse
    report: ConflictReportResponse


def _report_response(report: ConflictReport) -> ConflictReportResponse:
    return ConflictReportResponse(
        match_id=report.match_id,
        court_id=report.court_id,
        blocked=report.blocked,
        needs_override=report.needs_override,
        conflicts=[ConflictItem(**c.to_dict()) for c in report.conflicts],
    )


@router.get("/tournaments/{tournament_id}/ready-queue", response_model=List[MatchResponse])
def ready_queue(tournament_id: int, session: Session = Depends(get_session)):
    """Ready matches waiting for a court"""
    get_or_404(session, Tournament, tournament_id, "Tournament")
    return list_ready_queue(session, tournament_id)


@router.get("/matches/{match_id}/conflicts", response_model=ConflictReportResponse)
def preview_conflicts(match_id: int, court_id: int = Query(...), session: Session = Depends(get_session)):
    """What assigning this match to the court would run into, without assigning"""
    match = get_or_404(session, Match, match_id, "Match")
    get_or_404(session, Court, court_id, "Court")
    return _report_response(detect_conflicts(session, match, court_id))


@router.post("/matches/{match_id}/assign", response_model=AssignResponse)
def assign_match(match_id: int, payload: AssignRequest, session: Session = Depends(get_session)):
    """
    Assign a ready match to a court.

    409 when a player overlap blocks the assignment, 428 when rest warnings
    need an override_reason; both carry the conflict report.
    """
    result = assign_match_to_court(
        session,
        match_id,
        payload.court_id,
        actor=payload.actor,
        override_reason=payload.override_reason,
        notes=payload.notes,
    )
    body = AssignResponse(
        assigned=result.assigned,
        requires_override=result.requires_override,
        match=MatchResponse.model_validate(result.match),
        report=_report_response(result.report),
    )
    if result.assigned:
        return body
    status_code = 409 if result.report.blocked else 428
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.post("/courts/{court_id}/clear", response_model=CourtResponse)
def clear_court_endpoint(court_id: int, payload: ActorRequest = ActorRequest(), session: Session = Depends(get_session)):
    """Release a court whose match has not started"""
    return clear_court(session, court_id, actor=payload.actor)
