from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class AuditEvent(SQLModel, table=True):
    """Append-only record of assignments, overrides, sign-off decisions and score edits"""

    __tablename__ = "auditevent"

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: Optional[int] = Field(default=None, foreign_key="tournament.id", index=True)
    division_id: Optional[int] = Field(default=None, foreign_key="division.id")
    match_id: Optional[int] = Field(default=None, foreign_key="match.id", index=True)
    event_type: str
    actor: Optional[str] = None
    payload_json: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
