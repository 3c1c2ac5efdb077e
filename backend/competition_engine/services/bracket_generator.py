"""
Bracket Generator: balanced single-elimination draw.

size = smallest power of two >= n. Seed order is built recursively:
  order(2)  = [1, 2]
  order(2k) = each seed s of order(k) replaced by (s, 2k + 1 - s)

  4  -> [1, 4, 2, 3]
  8  -> [1, 8, 4, 5, 2, 7, 3, 6]

Consecutive entries are first-round pairs. A seed above n is a bye: no match
is created and the real entrant advances directly. Only first-round matches
are planned here; later rounds are filled in by bracket advancement as
results come in.
"""

import logging
from dataclasses import dataclass, field
from typing import Generic, List, Optional, Sequence, Tuple, TypeVar

from competition_engine.errors import ConfigurationError

logger = logging.getLogger(__name__)

MAIN_BRACKET_STAGE = "Main Bracket"
CONSOLATION_BRACKET_STAGE = "Consolation Bracket"
BRONZE_STAGE = "Bronze Match"

# Round number given to the bronze match so it sorts after every real round
BRONZE_ROUND = 999
BRONZE_MIN_ENTRANTS = 4

T = TypeVar("T")


@dataclass
class FirstRoundPairing(Generic[T]):
    position: int  # 1-based position within round 1
    seed_a: int
    seed_b: int
    entrant_a: Optional[T]
    entrant_b: Optional[T]

    @property
    def is_bye(self) -> bool:
        return self.entrant_a is None or self.entrant_b is None

    @property
    def advancing(self) -> Optional[T]:
        """Entrant that advances without playing (bye pairings only)."""
        if not self.is_bye:
            return None
        return self.entrant_a if self.entrant_a is not None else self.entrant_b


@dataclass
class BracketPlan(Generic[T]):
    stage: str
    size: int
    rounds: int
    seed_order: List[int]
    pairings: List[FirstRoundPairing[T]] = field(default_factory=list)
    bronze: bool = False

    @property
    def matches(self) -> List[FirstRoundPairing[T]]:
        return [p for p in self.pairings if not p.is_bye]

    @property
    def byes(self) -> List[FirstRoundPairing[T]]:
        return [p for p in self.pairings if p.is_bye]

    @property
    def seed_pairs(self) -> List[Tuple[int, int]]:
        return [(p.seed_a, p.seed_b) for p in self.pairings]

    @property
    def slots(self) -> List[Optional[T]]:
        """Entrants in draw order (None for a bye slot)."""
        out: List[Optional[T]] = []
        for p in self.pairings:
            out.extend([p.entrant_a, p.entrant_b])
        return out


def bracket_size(n: int) -> int:
    """Smallest power of two >= n (never below 2)."""
    size = 2
    while size < n:
        size *= 2
    return size


def round_count(size: int) -> int:
    return size.bit_length() - 1


def bracket_seed_order(size: int) -> List[int]:
    """Seed numbers in draw position order for a power-of-two bracket."""
    if size < 2 or size & (size - 1):
        raise ValueError(f"bracket size must be a power of two >= 2, got {size}")
    if size == 2:
        return [1, 2]

    half = bracket_seed_order(size // 2)
    expanded: List[int] = []
    for s in half:
        expanded.append(s)
        expanded.append(size + 1 - s)
    return expanded


def round_name(round_number: int, total_rounds: int) -> str:
    remaining = total_rounds - round_number
    if round_number == BRONZE_ROUND:
        return "Bronze"
    if remaining == 0:
        return "Final"
    if remaining == 1:
        return "Semifinal"
    if remaining == 2:
        return "Quarterfinal"
    return f"Round {round_number}"


def build_bracket(seeded: Sequence[T], stage: str = MAIN_BRACKET_STAGE, bronze: bool = False) -> BracketPlan[T]:
    """Plan the first round of a single-elimination bracket for seeded entrants (rank 1 first)."""
    n = len(seeded)
    if n < 2:
        raise ConfigurationError(f"A bracket needs at least 2 entrants, got {n}", code="NOT_ENOUGH_ENTRANTS")

    size = bracket_size(n)
    order = bracket_seed_order(size)

    pairings: List[FirstRoundPairing[T]] = []
    for i in range(0, size, 2):
        seed_a, seed_b = order[i], order[i + 1]
        pairings.append(
            FirstRoundPairing(
                position=i // 2 + 1,
                seed_a=seed_a,
                seed_b=seed_b,
                entrant_a=seeded[seed_a - 1] if seed_a <= n else None,
                entrant_b=seeded[seed_b - 1] if seed_b <= n else None,
            )
        )

    with_bronze = bronze
    if bronze and n < BRONZE_MIN_ENTRANTS:
        logger.warning("%s: bronze match ignored, %d entrants cannot produce two semifinal losers", stage, n)
        with_bronze = False

    return BracketPlan(
        stage=stage,
        size=size,
        rounds=round_count(size),
        seed_order=order,
        pairings=pairings,
        bronze=with_bronze,
    )
