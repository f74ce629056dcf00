from bracket_engine.models.audit_event import AuditEvent
from bracket_engine.models.court import Court
from bracket_engine.models.court_assignment import CourtAssignment
from bracket_engine.models.division import Division
from bracket_engine.models.draw_state import DrawState
from bracket_engine.models.entry import Entry
from bracket_engine.models.match import Match
from bracket_engine.models.match_conflict import MatchConflict
from bracket_engine.models.participant import Participant
from bracket_engine.models.standing import Standing
from bracket_engine.models.team import Team, TeamMember
from bracket_engine.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Division",
    "Court",
    "Participant",
    "Team",
    "TeamMember",
    "Entry",
    "Match",
    "Standing",
    "DrawState",
    "AuditEvent",
    "MatchConflict",
    "CourtAssignment",
]
