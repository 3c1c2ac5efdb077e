"""
Match generation for a division.

Selects the division's active teams, seeds them, and emits the match graph for
the configured format:

  single_stage + round_robin         -> one "Round Robin" group
  single_stage + single_elimination  -> "Main Bracket" (+ optional "Bronze Match")
  two_stage                          -> snake-drafted pools "Pool A", "Pool B", ...
                                        then generate_bracket_from_pools() once
                                        every pool match is official

Generation is all-or-nothing: every match of the stage is added in one
transaction and committed once. Configuration errors are raised before
anything is written.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from competition_engine.errors import ConfigurationError, NotFoundError
from competition_engine.models.division import (
    FORMAT_LADDER,
    FORMAT_ROUND_ROBIN,
    FORMAT_SINGLE_ELIMINATION,
    SCHEDULE_SCHEDULED,
    STAGE_MODE_SINGLE,
    STAGE_MODE_TWO,
    Division,
)
from competition_engine.models.match import (
    MATCH_TYPE_BRACKET,
    MATCH_TYPE_BRONZE,
    MATCH_TYPE_POOL,
    MATCH_TYPE_ROUND_ROBIN,
    Match,
)
from competition_engine.models.team import TEAM_ACTIVE, Team
from competition_engine.services.advancement_service import (
    ensure_next_round_match,
    is_decided,
    link_bronze_sources,
)
from competition_engine.services.bracket_generator import (
    BRONZE_ROUND,
    BRONZE_STAGE,
    CONSOLATION_BRACKET_STAGE,
    MAIN_BRACKET_STAGE,
    BracketPlan,
    build_bracket,
    round_name,
)
from competition_engine.services.pool_allocator import PoolPlan, allocate_pools, single_group_round_robin
from competition_engine.services.ratings import DatabaseRatingsProvider, RatingsProvider
from competition_engine.services.seeding import seed_entrants
from competition_engine.services.standings_service import stage_standings

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    division_id: int
    stages: List[str] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)
    byes: int = 0


def _load_division(session: Session, division_id: int) -> Division:
    division = session.get(Division, division_id)
    if not division:
        raise NotFoundError(f"Division {division_id} not found")
    return division


def active_teams(session: Session, division_id: int) -> List[Team]:
    """Non-withdrawn, complete teams in registration order."""
    return list(
        session.exec(
            select(Team).where(Team.division_id == division_id, Team.status == TEAM_ACTIVE).order_by(Team.id)
        ).all()
    )


def _reject(division: Division, error: ConfigurationError) -> ConfigurationError:
    logger.warning("Generation rejected for division %s: %s", division.id, error)
    return error


def _pool_matches(division: Division, plan: PoolPlan[Team], match_type: str) -> List[Match]:
    matches = []
    for sequence, (team_a, team_b) in enumerate(plan.pairs, start=1):
        matches.append(
            Match(
                tournament_id=division.tournament_id,
                division_id=division.id,
                stage=plan.label,
                match_type=match_type,
                round_number=1,
                bracket_position=sequence,
                team_a_id=team_a.id,
                team_b_id=team_b.id,
                placeholder_side_a=team_a.display_name,
                placeholder_side_b=team_b.display_name,
            )
        )
    return matches


def _store_layout(session: Session, division: Division, plan: BracketPlan[Team]) -> None:
    layouts = dict(division.bracket_layouts or {})
    layouts[plan.stage] = {
        "size": plan.size,
        "rounds": plan.rounds,
        "slots": [t.id if t is not None else None for t in plan.slots],
        "bronze": plan.bronze,
    }
    # Reassign so the JSON column is flagged dirty
    division.bracket_layouts = layouts
    session.add(division)


def _bracket_matches(session: Session, division: Division, plan: BracketPlan[Team]) -> List[Match]:
    """Add round-one matches (and the bronze placeholder) and resolve rounds made of byes. Flushes, never commits."""
    _store_layout(session, division, plan)

    created: List[Match] = []
    for pairing in plan.matches:
        created.append(
            Match(
                tournament_id=division.tournament_id,
                division_id=division.id,
                stage=plan.stage,
                match_type=MATCH_TYPE_BRACKET,
                round_number=1,
                bracket_position=pairing.position,
                team_a_id=pairing.entrant_a.id,
                team_b_id=pairing.entrant_b.id,
                placeholder_side_a=f"Seed {pairing.seed_a}",
                placeholder_side_b=f"Seed {pairing.seed_b}",
            )
        )

    if plan.bronze:
        semifinal = round_name(plan.rounds - 1, plan.rounds)
        created.append(
            Match(
                tournament_id=division.tournament_id,
                division_id=division.id,
                stage=BRONZE_STAGE,
                match_type=MATCH_TYPE_BRONZE,
                round_number=BRONZE_ROUND,
                bracket_position=1,
                placeholder_side_a=f"Loser of {semifinal} 1",
                placeholder_side_b=f"Loser of {semifinal} 2",
            )
        )

    session.add_all(created)
    session.flush()

    # Two neighbouring byes already decide a round-two match
    for pairing in plan.byes:
        next_match = ensure_next_round_match(session, division, plan.stage, 1, pairing.position)
        if next_match is not None:
            created.append(next_match)

    for match in created:
        if match.match_type == MATCH_TYPE_BRACKET:
            link_bronze_sources(session, division, match)
    return created


def _commit_generation(session: Session, division: Division, result: GenerationResult, build) -> GenerationResult:
    try:
        result.matches = build()
        division.schedule_status = SCHEDULE_SCHEDULED
        session.add(division)
        session.commit()
    except IntegrityError as e:
        # Another generation for this division committed first
        session.rollback()
        raise _reject(
            division, ConfigurationError("Matches already generated for this division", code="ALREADY_GENERATED")
        ) from e
    except Exception:
        session.rollback()
        logger.exception("Generation failed for division %s; rolled back", division.id)
        raise

    for match in result.matches:
        session.refresh(match)
    logger.info(
        "Generated %d matches for division %s (%s), %d byes",
        len(result.matches),
        division.id,
        ", ".join(result.stages),
        result.byes,
    )
    return result


def generate_division_matches(
    session: Session,
    division_id: int,
    ratings: Optional[RatingsProvider] = None,
    rng: Optional[random.Random] = None,
) -> GenerationResult:
    """
    Generate the first-stage match graph of a division.

    Raises ConfigurationError (nothing written) for invalid formats, pool
    guardrail violations, too few entrants, or when matches already exist.
    """
    division = _load_division(session, division_id)

    existing = session.exec(select(Match.id).where(Match.division_id == division_id)).first()
    if existing is not None:
        raise _reject(division, ConfigurationError("Matches already generated for this division", code="ALREADY_GENERATED"))

    if division.main_format == FORMAT_LADDER:
        raise _reject(division, ConfigurationError("Ladder format is not generated by this engine", code="UNSUPPORTED_FORMAT"))
    if division.stage_mode not in (STAGE_MODE_SINGLE, STAGE_MODE_TWO):
        raise _reject(division, ConfigurationError(f"Unknown stage mode '{division.stage_mode}'", code="UNSUPPORTED_FORMAT"))

    teams = active_teams(session, division_id)
    try:
        seeded = seed_entrants(teams, division.seeding_method, ratings or DatabaseRatingsProvider(session), rng)
        result = GenerationResult(division_id=division_id)

        if division.stage_mode == STAGE_MODE_TWO:
            pools = allocate_pools(seeded, division.number_of_pools, division.teams_per_pool)
            result.stages = [p.label for p in pools]

            def build() -> List[Match]:
                matches = [m for p in pools for m in _pool_matches(division, p, MATCH_TYPE_POOL)]
                session.add_all(matches)
                session.flush()
                return matches

        elif division.main_format == FORMAT_ROUND_ROBIN:
            group = single_group_round_robin(seeded)
            result.stages = [group.label]

            def build() -> List[Match]:
                matches = _pool_matches(division, group, MATCH_TYPE_ROUND_ROBIN)
                session.add_all(matches)
                session.flush()
                return matches

        elif division.main_format == FORMAT_SINGLE_ELIMINATION:
            plan = build_bracket(seeded, MAIN_BRACKET_STAGE, division.bronze_match)
            result.stages = [plan.stage] + ([BRONZE_STAGE] if plan.bronze else [])
            result.byes = len(plan.byes)

            def build() -> List[Match]:
                return _bracket_matches(session, division, plan)

        else:
            raise ConfigurationError(f"Unknown format '{division.main_format}'", code="UNSUPPORTED_FORMAT")
    except ConfigurationError as e:
        raise _reject(division, e)

    return _commit_generation(session, division, result, build)


def _pool_sort_key(label: str):
    # "Pool B" before "Pool AA"
    return len(label), label


def pool_finishers(session: Session, division: Division) -> Dict[str, List[int]]:
    """Team ids of every pool in finishing order."""
    labels = session.exec(
        select(Match.stage).where(Match.division_id == division.id, Match.match_type == MATCH_TYPE_POOL).distinct()
    ).all()
    return {
        label: [row.team_id for row in stage_standings(session, division, label)]
        for label in sorted(labels, key=_pool_sort_key)
    }


def cross_pool_seeding(finishers: Dict[str, List[int]], start: int, count: int) -> List[int]:
    """Seed finishing positions start..start+count-1 of every pool: by position, then pool letter."""
    seeded: List[int] = []
    for position in range(start, start + count):
        for label in sorted(finishers, key=_pool_sort_key):
            ranked = finishers[label]
            if position < len(ranked):
                seeded.append(ranked[position])
    return seeded


def _teams_by_id(session: Session, team_ids: Sequence[int]) -> List[Team]:
    return [session.get(Team, tid) for tid in team_ids]


def generate_bracket_from_pools(session: Session, division_id: int) -> GenerationResult:
    """
    Seed the post-pool brackets of a two-stage division from final pool standings.

    Top advance_to_main of every pool -> "Main Bracket"; the next
    advance_to_consolation of every pool -> "Consolation Bracket" (no bronze).
    """
    division = _load_division(session, division_id)

    if division.stage_mode != STAGE_MODE_TWO:
        raise _reject(division, ConfigurationError("Division has no pool stage", code="NOT_TWO_STAGE"))
    if division.secondary_format not in (None, FORMAT_SINGLE_ELIMINATION):
        raise _reject(
            division,
            ConfigurationError(f"Unsupported bracket format '{division.secondary_format}'", code="UNSUPPORTED_FORMAT"),
        )

    pool_matches = session.exec(
        select(Match).where(Match.division_id == division_id, Match.match_type == MATCH_TYPE_POOL)
    ).all()
    if not pool_matches:
        raise _reject(division, ConfigurationError("Pool matches have not been generated", code="POOLS_NOT_GENERATED"))
    unfinished = [m for m in pool_matches if not is_decided(m)]
    if unfinished:
        raise _reject(
            division,
            ConfigurationError(f"{len(unfinished)} pool matches are not official yet", code="POOLS_INCOMPLETE"),
        )

    already = session.exec(
        select(Match.id).where(
            Match.division_id == division_id,
            Match.stage.in_([MAIN_BRACKET_STAGE, CONSOLATION_BRACKET_STAGE]),
        )
    ).first()
    if already is not None:
        raise _reject(division, ConfigurationError("Bracket stage already generated", code="ALREADY_GENERATED"))

    finishers = pool_finishers(session, division)
    main_ids = cross_pool_seeding(finishers, 0, division.advance_to_main)
    consolation_ids = cross_pool_seeding(finishers, division.advance_to_main, division.advance_to_consolation)

    try:
        plans = [build_bracket(_teams_by_id(session, main_ids), MAIN_BRACKET_STAGE, division.bronze_match)]
        if division.advance_to_consolation > 0:
            if len(consolation_ids) >= 2:
                plans.append(build_bracket(_teams_by_id(session, consolation_ids), CONSOLATION_BRACKET_STAGE, False))
            else:
                logger.warning(
                    "Division %s: %d consolation qualifier(s), consolation bracket skipped",
                    division.id,
                    len(consolation_ids),
                )
    except ConfigurationError as e:
        raise _reject(division, e)

    result = GenerationResult(division_id=division_id)
    for plan in plans:
        result.stages.append(plan.stage)
        if plan.bronze:
            result.stages.append(BRONZE_STAGE)
        result.byes += len(plan.byes)

    def build() -> List[Match]:
        matches: List[Match] = []
        for plan in plans:
            matches.extend(_bracket_matches(session, division, plan))
        return matches

    return _commit_generation(session, division, result, build)
