"""
Match lifecycle state machine.

    scheduled -> ready -> on_court -> pending_signoff | completed | walkover
    pending_signoff -> completed | on_court | walkover

completed and walkover are terminal. A no-show can also be recorded as a
walkover before the match reaches a court (scheduled/ready -> walkover).

Every write is a compare-and-set on the status the caller read, so two
concurrent requests for the same move cannot both succeed. The only side
effect here is timestamp stamping; result recording lives in match_finalizer.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlmodel import Session

from bracket_engine.exceptions import StateTransitionError
from bracket_engine.models.match import (
    STATUS_COMPLETED,
    STATUS_ON_COURT,
    STATUS_PENDING_SIGNOFF,
    STATUS_READY,
    STATUS_SCHEDULED,
    STATUS_WALKOVER,
    TERMINAL_STATUSES,
    Match,
)

TRANSITIONS: Dict[str, frozenset] = {
    STATUS_SCHEDULED: frozenset({STATUS_READY, STATUS_WALKOVER}),
    STATUS_READY: frozenset({STATUS_ON_COURT, STATUS_WALKOVER}),
    STATUS_ON_COURT: frozenset({STATUS_PENDING_SIGNOFF, STATUS_COMPLETED, STATUS_WALKOVER}),
    STATUS_PENDING_SIGNOFF: frozenset({STATUS_COMPLETED, STATUS_ON_COURT, STATUS_WALKOVER}),
    STATUS_COMPLETED: frozenset(),
    STATUS_WALKOVER: frozenset(),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def validate_transition(current: str, target: str) -> None:
    """Raise StateTransitionError unless current -> target is in the table."""
    if target not in TRANSITIONS:
        raise StateTransitionError(current, target, f"Unknown match status '{target}'")
    if not can_transition(current, target):
        if is_terminal(current):
            raise StateTransitionError(
                current, target, f"Match is '{current}' (terminal); cannot move to '{target}'"
            )
        raise StateTransitionError(current, target)


def _timestamps_for(current: str, target: str, now: datetime) -> Dict[str, Any]:
    if target == STATUS_ON_COURT and current == STATUS_READY:
        return {"started_at": now}
    if target in TERMINAL_STATUSES:
        return {"ended_at": now}
    return {}


def transition(
    session: Session,
    match: Match,
    target: str,
    now: Optional[datetime] = None,
    values: Optional[Dict[str, Any]] = None,
) -> Match:
    """
    Move *match* to *target* atomically.

    Args:
        session: caller's session (not committed here)
        match: match as read by the caller; its status is the expected state
        target: requested status
        now: clock override for stamping
        values: extra column values written in the same conditional update

    Raises:
        StateTransitionError: illegal move, or the row changed underneath us
    """
    current = match.status
    validate_transition(current, target)

    now = now or datetime.utcnow()
    new_values: Dict[str, Any] = {"status": target}
    new_values.update(_timestamps_for(current, target, now))
    if values:
        new_values.update(values)

    result = session.execute(
        update(Match)
        .where(Match.id == match.id, Match.status == current)
        .values(**new_values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.refresh(match)
        raise StateTransitionError(
            match.status,
            target,
            f"Match {match.id} changed concurrently: expected '{current}', found '{match.status}'",
        )

    session.refresh(match)
    return match
