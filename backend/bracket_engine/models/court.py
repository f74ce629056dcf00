from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class Court(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "name", name="uq_court_tournament_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str  # e.g. "C1"
    is_active: bool = Field(default=True)

    # Occupancy marker, written only by compare-and-set (NULL = free)
    current_match_id: Optional[int] = Field(default=None, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
