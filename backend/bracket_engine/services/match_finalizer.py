"""
Match finalization: the one path that turns a result into a finished match.

Direct TD completion, walkovers and referee sign-off approval all end in
_finalize(): status + winner + score payload in one conditional update, court
released, knockout winner advanced, audit event written, single commit.

Score edits on finished matches are a narrower operation: the status never
changes, and a knockout winner change is refused once the next match has left
'scheduled'.
"""
import logging
from datetime import datetime
from typing import Any, List, Optional, Union

from sqlalchemy import update
from sqlmodel import Session, select

from bracket_engine.exceptions import ConsistencyError, StateTransitionError, ValidationError
from bracket_engine.models.division import Division
from bracket_engine.models.match import (
    PHASE_KNOCKOUT,
    PHASE_SWISS,
    SIDE_A,
    SIDE_B,
    STATUS_COMPLETED,
    STATUS_ON_COURT,
    STATUS_PENDING_SIGNOFF,
    STATUS_SCHEDULED,
    STATUS_WALKOVER,
    Match,
)
from bracket_engine.models.standing import Standing
from bracket_engine.services.court_assignment import release_court
from bracket_engine.services.knockout_bracket import advance_winner
from bracket_engine.services.match_state import transition, validate_transition
from bracket_engine.services.score_payload import (
    GamesResult,
    GameScore,
    WalkoverResult,
    build_games_result,
    dump_payload,
    load_payload,
    parse_games,
)
from bracket_engine.services.standings_calculator import calculate_standings, persist_standings
from bracket_engine.utils.queries import emit_audit_event, get_or_404

logger = logging.getLogger(__name__)


def _check_side(winner_side: Optional[str]) -> str:
    if winner_side not in (SIDE_A, SIDE_B):
        raise ValidationError(f"winner_side must be '{SIDE_A}' or '{SIDE_B}', got {winner_side!r}")
    return winner_side


def decide_winner(games: List[GameScore], winner_side: Optional[str] = None) -> str:
    """Explicit winner if given, otherwise the side that won more games."""
    if winner_side is not None:
        return _check_side(winner_side)
    won_a = sum(1 for g in games if g.score_a > g.score_b)
    won_b = sum(1 for g in games if g.score_b > g.score_a)
    if won_a == won_b:
        raise ValidationError("Games are level; winner_side is required")
    return SIDE_A if won_a > won_b else SIDE_B


def _games_result(raw_games: Any) -> GamesResult:
    return build_games_result(parse_games(raw_games))


def _require_playable(match: Match) -> None:
    if match.is_bye:
        raise ValidationError(f"Match {match.id} is a bye and is never played")
    if match.side_a_entry_id is None or match.side_b_entry_id is None:
        raise ValidationError(f"Match {match.id} is still waiting for an opponent")


def _finalize(
    session: Session,
    match: Match,
    target: str,
    payload: Union[GamesResult, WalkoverResult],
    winner_side: str,
    event_type: str,
    actor: Optional[str],
    audit_payload: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Match:
    now = now or datetime.utcnow()
    division = get_or_404(session, Division, match.division_id, "Division")
    try:
        transition(
            session,
            match,
            target,
            now=now,
            values={"winner_side": winner_side, "score_json": dump_payload(payload), "pending_result_json": None},
        )
        release_court(session, match, now=now)
        if match.phase == PHASE_KNOCKOUT:
            advance_winner(session, match)
        emit_audit_event(
            session,
            event_type,
            tournament_id=division.tournament_id,
            division_id=division.id,
            match_id=match.id,
            actor=actor,
            payload={"winner_side": winner_side, "score": dump_payload(payload), **(audit_payload or {})},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(match)
    logger.info(f"Match {match.id} finished ({target}), winner side {winner_side}")
    return match


def complete_match(
    session: Session,
    match_id: int,
    games: Any,
    winner_side: Optional[str] = None,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Match:
    """
    Record a played result directly (TD entry).

    Args:
        games: [[21, 15], [21, 18]], dicts, or "21-15, 21-18"
        winner_side: "A" / "B"; derived from games won when omitted
    """
    match = get_or_404(session, Match, match_id, "Match")
    _require_playable(match)
    validate_transition(match.status, STATUS_COMPLETED)
    result = _games_result(games)
    winner = decide_winner(result.games, winner_side)
    return _finalize(session, match, STATUS_COMPLETED, result, winner, "match_completed", actor, now=now)


def record_walkover(
    session: Session,
    match_id: int,
    winner_side: str,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Match:
    """No-show or retirement: the winner is credited, no points are recorded."""
    match = get_or_404(session, Match, match_id, "Match")
    _require_playable(match)
    winner = _check_side(winner_side)
    validate_transition(match.status, STATUS_WALKOVER)
    return _finalize(
        session, match, STATUS_WALKOVER, WalkoverResult(), winner, "match_walkover", actor, {"reason": reason}, now
    )


def submit_result(
    session: Session,
    match_id: int,
    games: Any,
    winner_side: Optional[str] = None,
    actor: Optional[str] = None,
) -> Match:
    """Referee proposal: on_court -> pending_signoff; standings are untouched until approval."""
    match = get_or_404(session, Match, match_id, "Match")
    _require_playable(match)
    result = _games_result(games)
    winner = decide_winner(result.games, winner_side)
    pending = {
        "games": [[g.score_a, g.score_b] for g in result.games],
        "winner_side": winner,
        "submitted_by": actor,
        "submitted_at": datetime.utcnow().isoformat(),
    }
    try:
        transition(session, match, STATUS_PENDING_SIGNOFF, values={"pending_result_json": pending})
        emit_audit_event(
            session, "result_submitted", division_id=match.division_id, match_id=match.id, actor=actor, payload=pending
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(match)
    logger.info(f"Match {match.id}: result submitted by {actor}, awaiting sign-off")
    return match


def approve_result(session: Session, match_id: int, actor: Optional[str] = None) -> Match:
    """TD sign-off: finalize the pending referee result."""
    match = get_or_404(session, Match, match_id, "Match")
    if match.status != STATUS_PENDING_SIGNOFF or not match.pending_result_json:
        raise StateTransitionError(match.status, STATUS_COMPLETED, f"Match {match.id} has no result awaiting sign-off")
    pending = match.pending_result_json
    result = _games_result(pending.get("games"))
    winner = decide_winner(result.games, pending.get("winner_side"))
    return _finalize(
        session,
        match,
        STATUS_COMPLETED,
        result,
        winner,
        "result_approved",
        actor,
        {"submitted_by": pending.get("submitted_by")},
    )


def reject_result(session: Session, match_id: int, actor: Optional[str] = None, reason: Optional[str] = None) -> Match:
    """TD sign-off refused: back to on_court, proposal discarded."""
    match = get_or_404(session, Match, match_id, "Match")
    if match.status != STATUS_PENDING_SIGNOFF:
        raise StateTransitionError(match.status, STATUS_ON_COURT, f"Match {match.id} has no result awaiting sign-off")
    proposal = match.pending_result_json
    try:
        transition(session, match, STATUS_ON_COURT, values={"pending_result_json": None})
        emit_audit_event(
            session,
            "result_rejected",
            division_id=match.division_id,
            match_id=match.id,
            actor=actor,
            payload={"reason": reason, "proposal": proposal},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(match)
    logger.info(f"Match {match.id}: submitted result rejected by {actor}")
    return match


def _refresh_stored_standings(session: Session, division_id: int, from_round: int) -> None:
    rounds = session.exec(
        select(Standing.round_number)
        .where(Standing.division_id == division_id, Standing.round_number >= from_round)
        .distinct()
    ).all()
    for round_number in sorted(rounds):
        persist_standings(session, division_id, round_number, calculate_standings(session, division_id, round_number))


def edit_score(
    session: Session,
    match_id: int,
    games: Any,
    winner_side: Optional[str] = None,
    actor: Optional[str] = None,
) -> Match:
    """
    Correct the score of a completed match.

    Raises:
        StateTransitionError: match is not 'completed' (walkovers included)
        ValidationError: bye, or a bad score
        ConsistencyError: knockout winner change after the next match left 'scheduled'
    """
    match = get_or_404(session, Match, match_id, "Match")
    if match.status != STATUS_COMPLETED:
        raise StateTransitionError(match.status, STATUS_COMPLETED, f"Only completed matches can be edited, found '{match.status}'")
    if not isinstance(load_payload(match.score_json), GamesResult):
        raise ValidationError(f"Match {match.id} has no played score to edit")

    result = _games_result(games)
    winner = decide_winner(result.games, winner_side)
    old_score = match.score_json
    old_winner = match.winner_side
    winner_changed = winner != old_winner

    if match.phase == PHASE_KNOCKOUT and winner_changed and match.next_match_id is not None:
        next_match = get_or_404(session, Match, match.next_match_id, "Match")
        if next_match.status != STATUS_SCHEDULED:
            raise ConsistencyError(
                f"Cannot change the winner of match {match.id}: next match {next_match.id} is already '{next_match.status}'"
            )

    division = get_or_404(session, Division, match.division_id, "Division")
    try:
        edited = session.execute(
            update(Match)
            .where(Match.id == match.id, Match.status == STATUS_COMPLETED, Match.winner_side == old_winner)
            .values(score_json=dump_payload(result), winner_side=winner)
            .execution_options(synchronize_session=False)
        )
        if edited.rowcount != 1:
            raise ConsistencyError(f"Match {match.id} changed while its score was being edited")
        session.refresh(match)

        if match.phase == PHASE_KNOCKOUT and winner_changed:
            advance_winner(session, match, overwrite=True)
        if match.phase == PHASE_SWISS:
            _refresh_stored_standings(session, match.division_id, match.round_number)

        emit_audit_event(
            session,
            "score_edited",
            tournament_id=division.tournament_id,
            division_id=division.id,
            match_id=match.id,
            actor=actor,
            payload={
                "old_score": old_score,
                "new_score": dump_payload(result),
                "old_winner_side": old_winner,
                "new_winner_side": winner,
            },
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(match)
    logger.info(f"Match {match.id}: score edited by {actor}" + (" (winner changed)" if winner_changed else ""))
    return match
