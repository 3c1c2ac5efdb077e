"""
Ratings Provider collaborators.

The seeding ranker only needs "given a player id, what are their singles and
doubles ratings". Missing players or missing ratings default to 0 at the
point of use, never to an error.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Tuple, Union

from sqlmodel import Session

from competition_engine.models.player_rating import PlayerRating


@dataclass(frozen=True)
class PlayerRatings:
    singles: Optional[float] = None
    doubles: Optional[float] = None


class RatingsProvider(Protocol):
    def get_ratings(self, player_id: str) -> Optional[PlayerRatings]: ...


class InMemoryRatingsProvider:
    """Ratings from a plain mapping: player_id -> PlayerRatings or (singles, doubles)."""

    def __init__(self, ratings: Optional[Mapping[str, Union[PlayerRatings, Tuple[Optional[float], Optional[float]]]]] = None):
        self._ratings: Dict[str, PlayerRatings] = {}
        for player_id, value in (ratings or {}).items():
            if isinstance(value, PlayerRatings):
                self._ratings[player_id] = value
            else:
                singles, doubles = value
                self._ratings[player_id] = PlayerRatings(singles=singles, doubles=doubles)

    def get_ratings(self, player_id: str) -> Optional[PlayerRatings]:
        return self._ratings.get(player_id)


class DatabaseRatingsProvider:
    """Ratings read from the PlayerRating table."""

    def __init__(self, session: Session):
        self.session = session

    def get_ratings(self, player_id: str) -> Optional[PlayerRatings]:
        row = self.session.get(PlayerRating, player_id)
        if row is None:
            return None
        return PlayerRatings(singles=row.singles_rating, doubles=row.doubles_rating)
