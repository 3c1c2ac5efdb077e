"""
Seeding Ranker.

Orders a division's entrants before pool allocation or bracket generation.

Methods:
  rating  - singles rating for one-player entrants, mean doubles rating for
            two-player entrants (missing = 0), highest first. Falls back to a
            random permutation when nobody has a positive rating.
  random  - full random permutation. Deliberately non-deterministic; pass
            ``rng`` to make it reproducible.
  manual  - caller order, verbatim.
"""

import logging
import random
from typing import Callable, List, Optional, Sequence, TypeVar

from competition_engine.errors import ConfigurationError
from competition_engine.services.ratings import RatingsProvider

logger = logging.getLogger(__name__)

SEEDING_RATING = "rating"
SEEDING_RANDOM = "random"
SEEDING_MANUAL = "manual"

SEEDING_METHODS = (SEEDING_RATING, SEEDING_RANDOM, SEEDING_MANUAL)

T = TypeVar("T")


def _player_ids(entrant) -> Sequence[str]:
    return entrant.player_ids


def entrant_rating(player_ids: Sequence[str], ratings: Optional[RatingsProvider]) -> float:
    """Seeding rating of one entrant.

    One player: singles rating. Two players: mean of both doubles ratings.
    Any missing value counts as 0.
    """
    if not player_ids or ratings is None:
        return 0.0

    if len(player_ids) == 1:
        found = ratings.get_ratings(player_ids[0])
        return float(found.singles or 0) if found else 0.0

    total = 0.0
    for player_id in player_ids:
        found = ratings.get_ratings(player_id)
        total += float(found.doubles or 0) if found else 0.0
    return total / len(player_ids)


def random_permutation(entrants: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    shuffled = list(entrants)
    (rng or random).shuffle(shuffled)
    return shuffled


def seed_entrants(
    entrants: Sequence[T],
    method: str,
    ratings: Optional[RatingsProvider] = None,
    rng: Optional[random.Random] = None,
    players_of: Callable[[T], Sequence[str]] = _player_ids,
) -> List[T]:
    """Return entrants in seed order, rank 1 first. No side effects."""
    if method not in SEEDING_METHODS:
        raise ConfigurationError(
            f"Unknown seeding method '{method}'. Expected one of {', '.join(SEEDING_METHODS)}",
            code="UNKNOWN_SEEDING_METHOD",
        )

    if not entrants:
        return []

    if method == SEEDING_MANUAL:
        return list(entrants)

    if method == SEEDING_RANDOM:
        return random_permutation(entrants, rng)

    scored = [(entrant_rating(players_of(e), ratings), e) for e in entrants]
    if not any(score > 0 for score, _ in scored):
        logger.info("No positive ratings among %d entrants; seeding randomly", len(entrants))
        return random_permutation(entrants, rng)

    # sorted() is stable: equal ratings keep registration order
    return [e for _, e in sorted(scored, key=lambda item: -item[0])]
