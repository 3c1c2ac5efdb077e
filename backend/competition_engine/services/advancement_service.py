"""
Bracket advancement: when a bracket match becomes official, push its result downstream.

- Winner of round r position k feeds round r+1 position ceil(k/2)
  (odd k -> side A, even k -> side B).
- The next-round match is created once both of its feeders are resolved
  (an official match, or a round-one bye).
- Semifinal losers fill the bronze match; its sides are linked to the
  semifinals as soon as those exist.

Only team_a_id/team_b_id and source links on downstream matches are touched.
Score state of downstream matches is never changed here. Side writes bump
Match.version like every lifecycle transition.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from competition_engine.models.division import Division
from competition_engine.models.match import (
    MATCH_TYPE_BRACKET,
    MATCH_TYPE_BRONZE,
    ROLE_LOSER,
    ROLE_WINNER,
    SCORE_NONE,
    SCORE_OFFICIAL,
    SCORE_SUBMITTED,
    SIDE_A,
    SIDE_B,
    Match,
)
from competition_engine.services.bracket_generator import round_name
from competition_engine.utils.side_refs import loser_team_id
from competition_engine.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

DECIDED_STATES = (SCORE_OFFICIAL, SCORE_SUBMITTED)

# (team_id, source_match_id); team_id None means not resolved yet
Feeder = Tuple[Optional[int], Optional[int]]


def is_decided(match: Optional[Match]) -> bool:
    return match is not None and match.score_state in DECIDED_STATES and match.winner_team_id is not None


def get_layout(division: Division, stage: str) -> Optional[Dict[str, Any]]:
    return (division.bracket_layouts or {}).get(stage)


def find_bracket_match(session: Session, division_id: int, stage: str, round_number: int, position: int) -> Optional[Match]:
    return session.exec(
        select(Match).where(
            Match.division_id == division_id,
            Match.stage == stage,
            Match.round_number == round_number,
            Match.bracket_position == position,
        )
    ).first()


def find_bronze_match(session: Session, division_id: int) -> Optional[Match]:
    return session.exec(
        select(Match).where(Match.division_id == division_id, Match.match_type == MATCH_TYPE_BRONZE)
    ).first()


def feeder_result(session: Session, division: Division, stage: str, round_number: int, position: int) -> Feeder:
    """Resolved entrant (and its source match, if any) of one bracket slot."""
    layout = get_layout(division, stage)
    if layout is None:
        return None, None

    if round_number == 1:
        slots = layout["slots"]
        team_a, team_b = slots[2 * position - 2], slots[2 * position - 1]
        if team_a is None or team_b is None:
            # Bye: the real entrant advances without a match record
            return (team_a if team_a is not None else team_b), None

    match = find_bracket_match(session, division.id, stage, round_number, position)
    if match is None:
        return None, None
    if not is_decided(match):
        return None, match.id
    return match.winner_team_id, match.id


def link_bronze_sources(session: Session, division: Division, semifinal: Match) -> bool:
    """Point the bronze match's pending side at this semifinal. Returns True if a link was written."""
    layout = get_layout(division, semifinal.stage)
    if not layout or not layout.get("bronze"):
        return False
    if semifinal.round_number != layout["rounds"] - 1:
        return False
    bronze = find_bronze_match(session, division.id)
    if bronze is None:
        return False

    if semifinal.bracket_position == 1 and bronze.source_match_a_id is None:
        bronze.source_match_a_id = semifinal.id
        bronze.source_a_role = ROLE_LOSER
    elif semifinal.bracket_position == 2 and bronze.source_match_b_id is None:
        bronze.source_match_b_id = semifinal.id
        bronze.source_b_role = ROLE_LOSER
    else:
        return False
    session.add(bronze)
    return True


def ensure_next_round_match(
    session: Session, division: Division, stage: str, round_number: int, position: int
) -> Optional[Match]:
    """
    Create the match fed by (round_number, position) if both of its feeders are resolved.

    Returns the newly created match, or None when it already exists, a feeder
    is still open, or round_number is the final. Does not commit.
    """
    layout = get_layout(division, stage)
    if layout is None:
        return None
    total_rounds = layout["rounds"]
    if round_number >= total_rounds:
        return None

    next_round = round_number + 1
    next_position = (position + 1) // 2
    if find_bracket_match(session, division.id, stage, next_round, next_position) is not None:
        return None

    team_a, source_a = feeder_result(session, division, stage, round_number, 2 * next_position - 1)
    team_b, source_b = feeder_result(session, division, stage, round_number, 2 * next_position)
    if team_a is None or team_b is None:
        return None

    feeder_name = round_name(round_number, total_rounds)
    new_match = Match(
        tournament_id=division.tournament_id,
        division_id=division.id,
        stage=stage,
        match_type=MATCH_TYPE_BRACKET,
        round_number=next_round,
        bracket_position=next_position,
        team_a_id=team_a,
        team_b_id=team_b,
        placeholder_side_a=f"Winner of {feeder_name} {2 * next_position - 1}",
        placeholder_side_b=f"Winner of {feeder_name} {2 * next_position}",
        source_match_a_id=source_a,
        source_match_b_id=source_b,
        source_a_role=ROLE_WINNER if source_a is not None else None,
        source_b_role=ROLE_WINNER if source_b is not None else None,
    )
    session.add(new_match)
    session.flush()
    logger.info(
        "Created %s %s %d (match %s) for division %s",
        stage,
        round_name(next_round, total_rounds),
        next_position,
        new_match.id,
        division.id,
    )
    link_bronze_sources(session, division, new_match)
    return new_match


def _assign_side(session: Session, down: Match, side: str, team_id: int, replaceable: Optional[int]) -> bool:
    """
    Write team_id into one side of a downstream match.

    Only set if null or already same; a previous result may be replaced while
    the downstream match is still unscored. The write is a compare-and-swap on
    the version read here, so a player acting on the old pairing loses the race.
    """
    current = down.team_a_id if side == SIDE_A else down.team_b_id
    if current == team_id:
        return False
    if current is not None:
        if replaceable is None or current != replaceable:
            logger.warning(
                "Match %s side %s already holds team %s, not overwriting with %s", down.id, side, current, team_id
            )
            return False
        if down.score_state != SCORE_NONE:
            logger.warning(
                "Match %s is already scored (%s); side %s left as team %s", down.id, down.score_state, side, current
            )
            return False

    column = "team_a_id" if side == SIDE_A else "team_b_id"
    result = session.connection().execute(
        update(Match)
        .where(Match.id == down.id, Match.version == down.version, Match.score_state == SCORE_NONE)
        .values({column: team_id, "version": down.version + 1, "updated_at": utc_now()})
    )
    session.expire(down)
    if result.rowcount != 1:
        logger.warning("Match %s changed while advancing side %s; left unchanged", down.id, side)
        return False
    return True


def _fill_downstream(
    session: Session, match: Match, role: str, team_id: Optional[int], replaceable: Optional[int]
) -> int:
    if team_id is None:
        return 0
    updated_count = 0

    # Downstream where this match feeds slot A
    downstream_a = session.exec(
        select(Match).where(
            Match.division_id == match.division_id,
            Match.source_match_a_id == match.id,
            Match.source_a_role == role,
        ).execution_options(populate_existing=True)
    ).all()
    for down in downstream_a:
        if _assign_side(session, down, SIDE_A, team_id, replaceable):
            updated_count += 1

    # Downstream where this match feeds slot B
    downstream_b = session.exec(
        select(Match).where(
            Match.division_id == match.division_id,
            Match.source_match_b_id == match.id,
            Match.source_b_role == role,
        ).execution_options(populate_existing=True)
    ).all()
    for down in downstream_b:
        if _assign_side(session, down, SIDE_B, team_id, replaceable):
            updated_count += 1

    return updated_count


def apply_advancement_for_final_match(
    session: Session,
    match_id: int,
    previous_winner_id: Optional[int] = None,
    previous_loser_id: Optional[int] = None,
) -> int:
    """
    Given an official bracket match, advance its winner (and a semifinal loser)
    into downstream matches, creating the next-round match when it is ready.

    Pass the previous winner/loser after an edit so unscored downstream sides
    holding the old result are rewritten.

    Returns count of downstream slots filled plus matches created.
    Idempotent: calling twice produces same DB state.
    """
    match = session.get(Match, match_id)
    if not is_decided(match):
        return 0
    if match.match_type not in (MATCH_TYPE_BRACKET, MATCH_TYPE_BRONZE):
        return 0

    updated_count = _fill_downstream(session, match, ROLE_WINNER, match.winner_team_id, previous_winner_id)
    updated_count += _fill_downstream(session, match, ROLE_LOSER, loser_team_id(match), previous_loser_id)

    if match.match_type == MATCH_TYPE_BRACKET:
        division = session.get(Division, match.division_id)
        try:
            created = ensure_next_round_match(session, division, match.stage, match.round_number, match.bracket_position)
        except IntegrityError:
            # Another finalization created the same slot first
            session.rollback()
            logger.info("Next-round slot for match %s already created concurrently", match_id)
            return apply_advancement_for_final_match(session, match_id, previous_winner_id, previous_loser_id)
        if created is not None:
            updated_count += 1

    if updated_count:
        session.commit()
    return updated_count


def resolve_all_dependencies(session: Session, division_id: int) -> Dict:
    """
    Bulk resolve advancement for every official bracket match in a division.

    Returns:
        Dict with:
        - matches_processed: number of official bracket matches processed
        - teams_advanced: total downstream slots filled plus matches created
        - unknown_before: count of matches with an unresolved side before
        - unknown_after: count of matches with an unresolved side after

    Guarantees:
        - Idempotent (safe to call multiple times)
        - Deterministic ordering (round, then position)
    """
    all_matches = session.exec(select(Match).where(Match.division_id == division_id)).all()
    unknown_before = sum(1 for m in all_matches if m.team_a_id is None or m.team_b_id is None)

    matches_processed = 0
    teams_advanced = 0

    # Re-query every pass: each round can create the next round's matches
    seen: set = set()
    while True:
        pending: List[Match] = [
            m
            for m in session.exec(
                select(Match)
                .where(
                    Match.division_id == division_id,
                    Match.match_type.in_([MATCH_TYPE_BRACKET, MATCH_TYPE_BRONZE]),
                    Match.score_state.in_(DECIDED_STATES),
                    Match.winner_team_id.is_not(None),
                )
                .order_by(Match.round_number, Match.bracket_position, Match.id)
            ).all()
            if m.id not in seen
        ]
        if not pending:
            break
        for match in pending:
            seen.add(match.id)
            teams_advanced += apply_advancement_for_final_match(session, match.id)
            matches_processed += 1

    session.expire_all()
    all_matches_after = session.exec(select(Match).where(Match.division_id == division_id)).all()
    unknown_after = sum(1 for m in all_matches_after if m.team_a_id is None or m.team_b_id is None)

    return {
        "matches_processed": matches_processed,
        "teams_advanced": teams_advanced,
        "unknown_before": unknown_before,
        "unknown_after": unknown_after,
    }
