from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Participant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    display_name: str
    club: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
