from competition_engine.models.division import Division
from competition_engine.models.event_organizer import EventOrganizer
from competition_engine.models.match import Match
from competition_engine.models.player_rating import PlayerRating
from competition_engine.models.standings_entry import StandingsEntry
from competition_engine.models.team import Team
from competition_engine.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Division",
    "EventOrganizer",
    "Team",
    "Match",
    "PlayerRating",
    "StandingsEntry",
]
