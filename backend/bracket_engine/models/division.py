from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from bracket_engine.models.tournament import Tournament

PLAY_MODE_SINGLES = "singles"
PLAY_MODE_DOUBLES = "doubles"


class Division(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "name", name="uq_tournament_division"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    play_mode: str = Field(default=PLAY_MODE_SINGLES)  # "singles" | "doubles"

    # Swiss configuration; qualifiers=0 means no knockout stage
    swiss_rounds: int = Field(default=5)
    swiss_qualifiers: int = Field(default=0)
    draw_size: Optional[int] = Field(default=None)  # max entries, None = unlimited
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="divisions")
