from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel

PHASE_SWISS = "swiss"
PHASE_KNOCKOUT = "knockout"

SIDE_A = "A"
SIDE_B = "B"

STATUS_SCHEDULED = "scheduled"
STATUS_READY = "ready"
STATUS_ON_COURT = "on_court"
STATUS_PENDING_SIGNOFF = "pending_signoff"
STATUS_COMPLETED = "completed"
STATUS_WALKOVER = "walkover"

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_WALKOVER)
# A match holding a court is "active" for player-overlap purposes
ACTIVE_COURT_STATUSES = (STATUS_READY, STATUS_ON_COURT, STATUS_PENDING_SIGNOFF)


class Match(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("division_id", "phase", "round_number", "sequence", name="uq_match_division_position"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    round_number: int  # restarts at 1 for the knockout phase
    sequence: int
    phase: str = Field(default=PHASE_SWISS)  # "swiss" | "knockout"

    # side_b NULL in a swiss match = bye; in a knockout match = not yet decided
    side_a_entry_id: Optional[int] = Field(default=None, foreign_key="entry.id")
    side_b_entry_id: Optional[int] = Field(default=None, foreign_key="entry.id")

    status: str = Field(default=STATUS_SCHEDULED, index=True)
    winner_side: Optional[str] = Field(default=None)  # "A" | "B"
    score_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Referee-submitted result waiting for sign-off
    pending_result_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    court_id: Optional[int] = Field(default=None, foreign_key="court.id", index=True)
    assigned_at: Optional[datetime] = Field(default=None)
    assigned_by: Optional[str] = Field(default=None)
    started_at: Optional[datetime] = Field(default=None)
    ended_at: Optional[datetime] = Field(default=None, index=True)

    # Knockout linkage: winner of this match fills next_match.side_<next_match_side>
    next_match_id: Optional[int] = Field(default=None, foreign_key="match.id")
    next_match_side: Optional[str] = Field(default=None)  # "A" | "B"

    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_bye(self) -> bool:
        return self.phase == PHASE_SWISS and self.side_b_entry_id is None

    def entry_for_side(self, side: Optional[str]) -> Optional[int]:
        if side == SIDE_A:
            return self.side_a_entry_id
        if side == SIDE_B:
            return self.side_b_entry_id
        return None
