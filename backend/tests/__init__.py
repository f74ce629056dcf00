# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
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
