from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

from bracket_engine.config import DEFAULT_REST_WINDOW_MINUTES

if TYPE_CHECKING:
    from bracket_engine.models.division import Division


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    venue: str
    timezone: str = Field(default="UTC")
    rest_window_minutes: int = Field(default=DEFAULT_REST_WINDOW_MINUTES)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    divisions: List["Division"] = Relationship(back_populates="tournament")
