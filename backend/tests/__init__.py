# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from competition_engine.models.division import Division  # noqa: F401
from competition_engine.models.event_organizer import EventOrganizer  # noqa: F401
from competition_engine.models.match import Match  # noqa: F401
from competition_engine.models.player_rating import PlayerRating  # noqa: F401
from competition_engine.models.standings_entry import StandingsEntry  # noqa: F401
from competition_engine.models.team import Team  # noqa: F401
from competition_engine.models.tournament import Tournament  # noqa: F401
