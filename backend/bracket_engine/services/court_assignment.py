"""
Court operations: ready queue, court assignment, clearing and match start.

Court occupancy is Court.current_match_id. Assignment claims it with a
conditional update (free -> this match) and then claims the match's court
slot the same way (no court -> this court); both land in one transaction or
neither does, so two concurrent assignments can never share a court or a match.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session

from bracket_engine.exceptions import CapacityError, ConsistencyError, StateTransitionError, ValidationError
from bracket_engine.models.court import Court
from bracket_engine.models.court_assignment import CourtAssignment
from bracket_engine.models.division import Division
from bracket_engine.models.match import STATUS_ON_COURT, STATUS_READY, Match
from bracket_engine.models.match_conflict import MatchConflict
from bracket_engine.services.conflict_detector import Conflict, ConflictReport, detect_conflicts
from bracket_engine.services.match_state import transition
from bracket_engine.utils.queries import MatchFilter, emit_audit_event, fetch_division_ids, fetch_matches, get_or_404

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    match: Match
    report: ConflictReport
    assigned: bool

    @property
    def requires_override(self) -> bool:
        return not self.assigned and self.report.needs_override


def list_ready_queue(session: Session, tournament_id: int) -> List[Match]:
    """Ready matches without a court, both sides known, in play order."""
    division_ids = fetch_division_ids(session, tournament_id)
    if not division_ids:
        return []
    matches = fetch_matches(
        session, MatchFilter(division_ids=division_ids, statuses=[STATUS_READY], has_court=False)
    )
    return [m for m in matches if m.side_a_entry_id is not None and m.side_b_entry_id is not None]


def mark_ready(session: Session, match_id: int, actor: Optional[str] = None) -> Match:
    """scheduled -> ready once both sides are known."""
    match = get_or_404(session, Match, match_id, "Match")
    if match.side_a_entry_id is None or match.side_b_entry_id is None:
        raise ValidationError(f"Match {match_id} is still waiting for an opponent")
    try:
        transition(session, match, STATUS_READY)
        emit_audit_event(session, "match_ready", division_id=match.division_id, match_id=match.id, actor=actor)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(match)
    return match


def _record_conflicts(
    session: Session,
    conflicts: List[Conflict],
    match: Match,
    court_id: int,
    blocked: bool,
    actor: Optional[str],
    reason: Optional[str],
    now: datetime,
) -> None:
    for c in conflicts:
        session.add(
            MatchConflict(
                match_id=match.id,
                court_id=court_id,
                conflict_type=c.conflict_type,
                severity=c.severity,
                participant_id=c.participant_id,
                conflicting_match_id=c.conflicting_match_id,
                message=c.message,
                blocked=blocked,
                override_reason=reason,
                resolved_by=None if blocked else actor,
                resolved_at=None if blocked else now,
            )
        )


def assign_match_to_court(
    session: Session,
    match_id: int,
    court_id: int,
    actor: Optional[str] = None,
    override_reason: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AssignmentResult:
    """
    Put a ready match on a court.

    Player overlaps block the assignment and are logged. Rest warnings stop
    the assignment unless *override_reason* is given, in which case they are
    logged as overridden by *actor*. Returns the conflict report either way.

    Raises:
        StateTransitionError: match is not ready
        ConsistencyError: match already holds a court (or lost a race for it)
        CapacityError: court occupied or inactive
        ValidationError: blank override reason
    """
    now = now or datetime.utcnow()
    match = get_or_404(session, Match, match_id, "Match")
    court = get_or_404(session, Court, court_id, "Court")
    division = get_or_404(session, Division, match.division_id, "Division")

    if court.tournament_id != division.tournament_id:
        raise ValidationError(f"Court {court.name} belongs to a different tournament")
    if match.status != STATUS_READY:
        raise StateTransitionError(
            match.status, "assigned", f"Match {match.id} must be '{STATUS_READY}' to be assigned, found '{match.status}'"
        )
    if match.court_id is not None:
        raise ConsistencyError(f"Match {match.id} is already assigned to court {match.court_id}")
    if not court.is_active:
        raise CapacityError(f"Court {court.name} is not active")
    if court.current_match_id is not None:
        raise CapacityError(f"Court {court.name} is occupied by match {court.current_match_id}")
    if override_reason is not None and not override_reason.strip():
        raise ValidationError("Override reason is required to override a conflict")

    report = detect_conflicts(session, match, court_id, now=now)

    if report.blocked:
        try:
            _record_conflicts(session, report.errors, match, court_id, True, actor, None, now)
            emit_audit_event(
                session,
                "assignment_blocked",
                tournament_id=division.tournament_id,
                division_id=division.id,
                match_id=match.id,
                actor=actor,
                payload={"court_id": court_id, "conflicts": [c.to_dict() for c in report.errors]},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.warning(
            f"Assignment of match {match.id} to court {court.name} blocked: "
            + "; ".join(c.message for c in report.errors)
        )
        return AssignmentResult(match=match, report=report, assigned=False)

    if report.warnings and override_reason is None:
        return AssignmentResult(match=match, report=report, assigned=False)

    try:
        if report.warnings:
            reason = override_reason.strip()
            _record_conflicts(session, report.warnings, match, court_id, False, actor, reason, now)
            emit_audit_event(
                session,
                "conflict_override",
                tournament_id=division.tournament_id,
                division_id=division.id,
                match_id=match.id,
                actor=actor,
                payload={"court_id": court_id, "reason": reason, "conflicts": [c.to_dict() for c in report.warnings]},
            )
            logger.warning(f"Match {match.id}: {len(report.warnings)} rest warning(s) overridden by {actor}: {reason}")

        claimed = session.execute(
            update(Court)
            .where(Court.id == court_id, Court.current_match_id.is_(None), Court.is_active == True)  # noqa: E712
            .values(current_match_id=match.id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise CapacityError(f"Court {court.name} was taken by another assignment")

        placed = session.execute(
            update(Match)
            .where(Match.id == match.id, Match.status == STATUS_READY, Match.court_id.is_(None))
            .values(court_id=court_id, assigned_at=now, assigned_by=actor)
            .execution_options(synchronize_session=False)
        )
        if placed.rowcount != 1:
            raise ConsistencyError(f"Match {match.id} was assigned or changed by another request")

        session.add(CourtAssignment(match_id=match.id, court_id=court_id, assigned_by=actor, assigned_at=now, notes=notes))
        emit_audit_event(
            session,
            "court_assigned",
            tournament_id=division.tournament_id,
            division_id=division.id,
            match_id=match.id,
            actor=actor,
            payload={"court_id": court_id, "overridden": bool(report.warnings)},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(match)
    session.refresh(court)
    logger.info(f"Match {match.id} assigned to court {court.name} by {actor}")
    return AssignmentResult(match=match, report=report, assigned=True)


def release_court(session: Session, match: Match, now: Optional[datetime] = None) -> bool:
    """Free the court held by *match*, inside the caller's transaction."""
    if match.court_id is None:
        return False
    now = now or datetime.utcnow()
    released = session.execute(
        update(Court)
        .where(Court.id == match.court_id, Court.current_match_id == match.id)
        .values(current_match_id=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(CourtAssignment)
        .where(CourtAssignment.match_id == match.id, CourtAssignment.unassigned_at.is_(None))
        .values(unassigned_at=now)
        .execution_options(synchronize_session=False)
    )
    return released.rowcount == 1


def clear_court(session: Session, court_id: int, actor: Optional[str] = None) -> Court:
    """Take a not-yet-started match off its court and back into the ready queue."""
    court = get_or_404(session, Court, court_id, "Court")
    if court.current_match_id is None:
        return court
    match = get_or_404(session, Match, court.current_match_id, "Match")
    if match.status != STATUS_READY:
        raise StateTransitionError(
            match.status, STATUS_READY, f"Cannot clear court {court.name}: match {match.id} is '{match.status}'"
        )

    now = datetime.utcnow()
    try:
        unassigned = session.execute(
            update(Match)
            .where(Match.id == match.id, Match.status == STATUS_READY, Match.court_id == court.id)
            .values(court_id=None, assigned_at=None, assigned_by=None)
            .execution_options(synchronize_session=False)
        )
        if unassigned.rowcount != 1:
            raise ConsistencyError(f"Match {match.id} changed while clearing court {court.name}")
        # release_court reads the court the match held before the update above
        release_court(session, match, now=now)
        emit_audit_event(
            session,
            "court_cleared",
            division_id=match.division_id,
            match_id=match.id,
            actor=actor,
            payload={"court_id": court.id},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(court)
    logger.info(f"Court {court.name} cleared; match {match.id} back in the ready queue")
    return court


def start_match(session: Session, match_id: int, actor: Optional[str] = None) -> Match:
    """ready -> on_court for a match that holds a court."""
    match = get_or_404(session, Match, match_id, "Match")
    if match.court_id is None:
        raise ValidationError(f"Match {match.id} has no court assigned")
    try:
        transition(session, match, STATUS_ON_COURT)
        emit_audit_event(
            session,
            "match_started",
            division_id=match.division_id,
            match_id=match.id,
            actor=actor,
            payload={"court_id": match.court_id},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(match)
    return match
