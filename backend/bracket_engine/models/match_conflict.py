from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class MatchConflict(SQLModel, table=True):
    __tablename__ = "matchconflict"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="match.id", index=True)
    court_id: Optional[int] = Field(default=None, foreign_key="court.id")
    conflict_type: str  # "player_overlap" | "rest_violation"
    severity: str  # "warning" | "error"
    participant_id: Optional[int] = Field(default=None, foreign_key="participant.id")
    conflicting_match_id: Optional[int] = Field(default=None)
    message: str

    # blocked=True: assignment refused; otherwise the conflict was overridden
    blocked: bool = Field(default=False)
    override_reason: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
