import os

# Keep the app's own engine off disk; tests use test_engine below
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, select  # noqa: E402

from bracket_engine.database import get_session, import_models  # noqa: E402
from bracket_engine.main import app  # noqa: E402
from bracket_engine.models.court import Court  # noqa: E402
from bracket_engine.models.division import PLAY_MODE_DOUBLES, PLAY_MODE_SINGLES, Division  # noqa: E402
from bracket_engine.models.entry import Entry  # noqa: E402
from bracket_engine.models.participant import Participant  # noqa: E402
from bracket_engine.models.team import Team, TeamMember  # noqa: E402
from bracket_engine.models.tournament import Tournament  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions share the same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models imported before create_all() (import_models)
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables created per test and dropped afterwards
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema"""
    import_models()
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    Override MUST be set BEFORE TestClient() and stay in place for the entire
    duration so the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Builders
# ============================================================================


def make_tournament(session: Session, rest_window_minutes: int = 15, courts: int = 2) -> Tournament:
    tournament = Tournament(name="Spring Open", venue="Hall A", rest_window_minutes=rest_window_minutes)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    for i in range(1, courts + 1):
        session.add(Court(tournament_id=tournament.id, name=f"C{i}"))
    session.commit()
    return tournament


def make_courts(session: Session, tournament: Tournament):
    return session.exec(select(Court).where(Court.tournament_id == tournament.id).order_by(Court.id)).all()


def make_singles_division(
    session: Session,
    tournament: Tournament,
    entry_count: int,
    name: str = "Open Singles",
    swiss_rounds: int = 3,
    swiss_qualifiers: int = 0,
    seeded: bool = True,
):
    """Division with *entry_count* singles entries seeded 1..N in creation order."""
    division = Division(
        tournament_id=tournament.id,
        name=name,
        play_mode=PLAY_MODE_SINGLES,
        swiss_rounds=swiss_rounds,
        swiss_qualifiers=swiss_qualifiers,
    )
    session.add(division)
    session.commit()
    session.refresh(division)

    entries = []
    for i in range(1, entry_count + 1):
        participant = Participant(tournament_id=tournament.id, display_name=f"{name} Player {i}")
        session.add(participant)
        session.commit()
        session.refresh(participant)
        entry = Entry(division_id=division.id, participant_id=participant.id, seed=i if seeded else None)
        session.add(entry)
        session.commit()
        session.refresh(entry)
        entries.append(entry)
    return division, entries


def make_doubles_division(session: Session, tournament: Tournament, team_count: int, name: str = "Open Doubles"):
    division = Division(tournament_id=tournament.id, name=name, play_mode=PLAY_MODE_DOUBLES, swiss_rounds=3)
    session.add(division)
    session.commit()
    session.refresh(division)

    entries = []
    for i in range(1, team_count + 1):
        team = Team(division_id=division.id, name=f"Pair {i}")
        session.add(team)
        session.commit()
        session.refresh(team)
        for j in (1, 2):
            participant = Participant(tournament_id=tournament.id, display_name=f"{name} {i}{'ab'[j - 1]}")
            session.add(participant)
            session.commit()
            session.refresh(participant)
            session.add(TeamMember(team_id=team.id, participant_id=participant.id))
        entry = Entry(division_id=division.id, team_id=team.id, seed=i)
        session.add(entry)
        session.commit()
        session.refresh(entry)
        entries.append(entry)
    return division, entries


def play_match(session: Session, match, court, games, winner_side=None, actor="td"):
    """ready -> court -> on_court -> completed through the real services."""
    from bracket_engine.services.court_assignment import assign_match_to_court, mark_ready, start_match
    from bracket_engine.services.match_finalizer import complete_match

    mark_ready(session, match.id, actor=actor)
    result = assign_match_to_court(session, match.id, court.id, actor=actor, override_reason="test schedule")
    assert result.assigned, [c.message for c in result.report.conflicts]
    start_match(session, match.id, actor=actor)
    return complete_match(session, match.id, games, winner_side=winner_side, actor=actor)
