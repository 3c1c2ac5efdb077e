"""
Pool Allocator: snake draft into pools, full round robin inside each pool.

Snake (boustrophedon) draft for N pools, seeded index i (0-based):
  row = i // N
  even row -> pool i % N
  odd row  -> pool N - 1 - (i % N)

  N=4: seeds 1,2,3,4 -> A,B,C,D | 5,6,7,8 -> D,C,B,A | 9..12 -> A,B,C,D

Every pool of size k yields k*(k-1)/2 matches, each unordered pair once.
Pairs are ordered with the circle method so entrants rest evenly when the
pool is played in sequence.
"""

import logging
from dataclasses import dataclass, field
from typing import Generic, List, Optional, Sequence, Tuple, TypeVar

from competition_engine.errors import ConfigurationError

logger = logging.getLogger(__name__)

MIN_TEAMS_PER_POOL = 4
ROUND_ROBIN_STAGE = "Round Robin"

T = TypeVar("T")


@dataclass
class PoolPlan(Generic[T]):
    index: int
    label: str
    entrants: List[T]
    pairs: List[Tuple[T, T]] = field(default_factory=list)


def pool_letters(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 27 -> AB (spreadsheet-style base 26)."""
    if index < 0:
        raise ValueError(f"pool index must be >= 0, got {index}")
    letters = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def pool_label(index: int) -> str:
    return f"Pool {pool_letters(index)}"


def snake_pool_index(i: int, num_pools: int) -> int:
    row = i // num_pools
    col = i % num_pools
    if row % 2 == 0:
        return col
    return num_pools - 1 - col


def snake_draft(seeded: Sequence[T], num_pools: int) -> List[List[T]]:
    if num_pools < 1:
        raise ConfigurationError(f"Pool count must be >= 1, got {num_pools}", code="INVALID_POOL_COUNT")
    pools: List[List[T]] = [[] for _ in range(num_pools)]
    for i, entrant in enumerate(seeded):
        pools[snake_pool_index(i, num_pools)].append(entrant)
    return pools


def round_robin_order(pool_size: int) -> List[Tuple[int, int]]:
    """
    All unordered index pairs of a pool, in circle-method play order.

    Returns (idx_a, idx_b) with idx_a < idx_b, 0-based pool positions.
    Odd pool sizes get a virtual BYE position that is skipped.
    """
    if pool_size < 2:
        return []

    n2 = pool_size + 1 if pool_size % 2 == 1 else pool_size
    bye_idx = pool_size if pool_size % 2 == 1 else -1
    half = n2 // 2

    result: List[Tuple[int, int]] = []
    positions = list(range(n2))
    for _ in range(n2 - 1):
        for i in range(half):
            a, b = positions[i], positions[n2 - 1 - i]
            if a == bye_idx or b == bye_idx:
                continue
            result.append((min(a, b), max(a, b)))
        # Rotate: keep 0, move last to second, shift others
        positions = [positions[0]] + [positions[-1]] + positions[1:-1]
    return result


def round_robin_pairs(pool: Sequence[T]) -> List[Tuple[T, T]]:
    return [(pool[a], pool[b]) for a, b in round_robin_order(len(pool))]


def validate_pool_config(num_pools: int, teams_per_pool: int, entrant_count: int) -> None:
    """
    Two-stage pool play guardrail. Raises ConfigurationError; never degrades silently.

    Rules:
    - pool count >= 2 and even
    - configured teams-per-pool >= 4
    - every pool produced by the snake draft has >= 4 entrants
    """
    if num_pools < 2:
        raise ConfigurationError(f"Pool play needs at least 2 pools, got {num_pools}", code="INVALID_POOL_COUNT")
    if num_pools % 2 != 0:
        raise ConfigurationError(f"Pool count must be even, got {num_pools}", code="INVALID_POOL_COUNT")
    if teams_per_pool < MIN_TEAMS_PER_POOL:
        raise ConfigurationError(
            f"teams_per_pool must be >= {MIN_TEAMS_PER_POOL}, got {teams_per_pool}", code="POOL_TOO_SMALL"
        )
    # Snake draft sizes differ by at most one; the smallest pool is floor(k / N)
    smallest = entrant_count // num_pools
    if smallest < MIN_TEAMS_PER_POOL:
        raise ConfigurationError(
            f"{entrant_count} entrants across {num_pools} pools leaves a pool with {smallest} "
            f"(minimum {MIN_TEAMS_PER_POOL})",
            code="POOL_TOO_SMALL",
        )


def allocate_pools(
    seeded: Sequence[T],
    num_pools: int,
    teams_per_pool: Optional[int] = None,
) -> List[PoolPlan[T]]:
    """
    Snake-draft seeded entrants into pools and pair every pool as a round robin.

    Validates the two-stage guardrail first; nothing is produced on failure.
    """
    validate_pool_config(num_pools, teams_per_pool if teams_per_pool is not None else MIN_TEAMS_PER_POOL, len(seeded))

    plans: List[PoolPlan[T]] = []
    for index, members in enumerate(snake_draft(seeded, num_pools)):
        if teams_per_pool is not None and len(members) > teams_per_pool:
            logger.warning(
                "%s has %d entrants, above configured teams_per_pool=%d", pool_label(index), len(members), teams_per_pool
            )
        plans.append(PoolPlan(index=index, label=pool_label(index), entrants=members, pairs=round_robin_pairs(members)))
    return plans


def single_group_round_robin(seeded: Sequence[T]) -> PoolPlan[T]:
    """Single-stage round robin: the whole division is one group."""
    if len(seeded) < 2:
        raise ConfigurationError(
            f"Round robin needs at least 2 entrants, got {len(seeded)}", code="NOT_ENOUGH_ENTRANTS"
        )
    members = list(seeded)
    return PoolPlan(index=0, label=ROUND_ROBIN_STAGE, entrants=members, pairs=round_robin_pairs(members))
