from pathlib import Path
from typing import Generator

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from bracket_engine.config import DATABASE_URL, SQL_ECHO

_is_sqlite = DATABASE_URL.startswith("sqlite")
_connect_args = {"check_same_thread": False} if _is_sqlite else {}

if _is_sqlite and ":memory:" not in DATABASE_URL:
    db_path = DATABASE_URL.replace("sqlite:///", "", 1)
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

engine: Engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    connect_args=_connect_args,
)


def get_session() -> Generator[Session, None, None]:
    """Get database session"""
    with Session(engine) as session:
        yield session


def import_models() -> None:
    """Import all models so they're registered with SQLModel metadata"""
    from bracket_engine.models.audit_event import AuditEvent  # noqa: F401
    from bracket_engine.models.court import Court  # noqa: F401
    from bracket_engine.models.court_assignment import CourtAssignment  # noqa: F401
    from bracket_engine.models.division import Division  # noqa: F401
    from bracket_engine.models.draw_state import DrawState  # noqa: F401
    from bracket_engine.models.entry import Entry  # noqa: F401
    from bracket_engine.models.match import Match  # noqa: F401
    from bracket_engine.models.match_conflict import MatchConflict  # noqa: F401
    from bracket_engine.models.participant import Participant  # noqa: F401
    from bracket_engine.models.standing import Standing  # noqa: F401
    from bracket_engine.models.team import Team, TeamMember  # noqa: F401
    from bracket_engine.models.tournament import Tournament  # noqa: F401


def init_db() -> None:
    """Initialize database - create all tables"""
    import_models()
    SQLModel.metadata.create_all(engine)
