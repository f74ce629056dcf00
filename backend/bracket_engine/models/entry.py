from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel

ENTRY_ACTIVE = "active"
ENTRY_WITHDRAWN = "withdrawn"
ENTRY_LATE_ADD = "late_add"

# Statuses that take part in pairing
PAIRABLE_ENTRY_STATUSES = (ENTRY_ACTIVE, ENTRY_LATE_ADD)


class Entry(SQLModel, table=True):
    __table_args__ = (
        # Enforce unique seeds within a division (where seed is not null)
        SAUniqueConstraint("division_id", "seed", name="uq_division_seed"),
        CheckConstraint(
            "(participant_id IS NOT NULL AND team_id IS NULL) OR (participant_id IS NULL AND team_id IS NOT NULL)",
            name="ck_entry_participant_xor_team",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)

    # Singles entries reference a participant, doubles entries a team
    participant_id: Optional[int] = Field(default=None, foreign_key="participant.id")
    team_id: Optional[int] = Field(default=None, foreign_key="team.id")

    seed: Optional[int] = Field(default=None)  # 1-based (1=highest)
    status: str = Field(default=ENTRY_ACTIVE)  # "active" | "withdrawn" | "late_add"
    created_at: datetime = Field(default_factory=datetime.utcnow)
