from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

DRAW_NOT_STARTED = "not_started"
DRAW_SWISS = "swiss"
DRAW_KNOCKOUT = "knockout"
DRAW_COMPLETED = "completed"


class DrawState(SQLModel, table=True):
    __tablename__ = "drawstate"

    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", unique=True)
    phase: str = Field(default=DRAW_NOT_STARTED)  # not_started | swiss | knockout | completed

    # Round counter of the current phase (0 before round 1 is generated)
    current_round: int = Field(default=0)
    total_rounds: int
    qualifier_count: int = Field(default=0)
    knockout_rounds: Optional[int] = Field(default=None)

    bye_history: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(default_factory=datetime.utcnow)
