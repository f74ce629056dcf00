from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel


class Standing(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("division_id", "entry_id", "round_number", name="uq_standing_division_entry_round"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    entry_id: int = Field(foreign_key="entry.id")
    round_number: int  # snapshot "through" this Swiss round
    rank: int
    wins: int = Field(default=0)
    losses: int = Field(default=0)
    points_for: int = Field(default=0)
    points_against: int = Field(default=0)
    # {"point_diff": int, "h2h_results": {"<entry_id>": "W" | "L"}}
    tiebreak_json: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    computed_at: datetime = Field(default_factory=datetime.utcnow)
