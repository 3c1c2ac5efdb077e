"""
Standings: per-team aggregates over official results, and tie-break ordering.

Standings are derived data. They are recomputed from the match table whenever
a pool or league match reaches a terminal scored state and are never edited
directly.
"""

import logging
from dataclasses import dataclass
from itertools import groupby
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from competition_engine.errors import ConfigurationError, NotFoundError
from competition_engine.models.division import DEFAULT_TIE_BREAKERS, Division
from competition_engine.models.match import (
    MATCH_TYPE_POOL,
    MATCH_TYPE_ROUND_ROBIN,
    SCORE_OFFICIAL,
    SCORE_SUBMITTED,
    Match,
)
from competition_engine.models.standings_entry import StandingsEntry
from competition_engine.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

TIE_BREAK_WINS = "wins"
TIE_BREAK_POINT_DIFFERENTIAL = "point_differential"
TIE_BREAK_POINTS_FOR = "points_for"
TIE_BREAK_HEAD_TO_HEAD = "head_to_head"

TIE_BREAKERS = (TIE_BREAK_WINS, TIE_BREAK_POINT_DIFFERENTIAL, TIE_BREAK_POINTS_FOR, TIE_BREAK_HEAD_TO_HEAD)

POINTS_PER_WIN = 2
POINTS_PER_DRAW = 1

RANKED_MATCH_TYPES = (MATCH_TYPE_POOL, MATCH_TYPE_ROUND_ROBIN)


@dataclass
class StandingRow:
    team_id: int
    played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    points_for: int = 0
    points_against: int = 0
    rank: int = 0

    @property
    def point_differential(self) -> int:
        return self.points_for - self.points_against

    @property
    def ranking_points(self) -> int:
        return self.wins * POINTS_PER_WIN + self.draws * POINTS_PER_DRAW

    def to_dict(self) -> Dict:
        return {
            "team_id": self.team_id,
            "rank": self.rank,
            "played": self.played,
            "wins": self.wins,
            "losses": self.losses,
            "draws": self.draws,
            "points_for": self.points_for,
            "points_against": self.points_against,
            "point_differential": self.point_differential,
            "ranking_points": self.ranking_points,
        }


class StandingsAggregator(Protocol):
    def recompute(self, division_id: int) -> None: ...


def is_counted(match: Match) -> bool:
    return match.score_state in (SCORE_OFFICIAL, SCORE_SUBMITTED) and match.team_a_id is not None and match.team_b_id is not None


def compute_standings(team_ids: Iterable[int], matches: Iterable[Match]) -> Dict[int, StandingRow]:
    """Aggregate official results. Matches involving unknown teams are ignored."""
    rows: Dict[int, StandingRow] = {tid: StandingRow(team_id=tid) for tid in team_ids}

    for match in matches:
        if not is_counted(match):
            continue
        row_a = rows.get(match.team_a_id)
        row_b = rows.get(match.team_b_id)
        if row_a is None or row_b is None:
            continue

        points_a = sum(g["a"] for g in (match.games or []))
        points_b = sum(g["b"] for g in (match.games or []))
        row_a.played += 1
        row_b.played += 1
        row_a.points_for += points_a
        row_a.points_against += points_b
        row_b.points_for += points_b
        row_b.points_against += points_a

        if match.winner_team_id == match.team_a_id:
            row_a.wins += 1
            row_b.losses += 1
        elif match.winner_team_id == match.team_b_id:
            row_b.wins += 1
            row_a.losses += 1
        else:
            row_a.draws += 1
            row_b.draws += 1

    return rows


def _head_to_head_wins(group: Sequence[StandingRow], matches: Sequence[Match]) -> Dict[int, int]:
    """Wins of each team counting only matches among the tied group."""
    ids = {r.team_id for r in group}
    wins = {tid: 0 for tid in ids}
    for match in matches:
        if not is_counted(match):
            continue
        if match.team_a_id in ids and match.team_b_id in ids and match.winner_team_id in ids:
            wins[match.winner_team_id] += 1
    return wins


def _order(rows: List[StandingRow], keys: Sequence[str], matches: Sequence[Match]) -> List[StandingRow]:
    if len(rows) <= 1 or not keys:
        return sorted(rows, key=lambda r: r.team_id)

    key, rest = keys[0], keys[1:]
    if key == TIE_BREAK_HEAD_TO_HEAD:
        h2h = _head_to_head_wins(rows, matches)
        value = lambda r: h2h[r.team_id]  # noqa: E731
    else:
        value = lambda r: getattr(r, key)  # noqa: E731

    ordered: List[StandingRow] = []
    for _, tied in groupby(sorted(rows, key=value, reverse=True), key=value):
        ordered.extend(_order(list(tied), rest, matches))
    return ordered


def rank_standings(
    rows: Iterable[StandingRow], matches: Sequence[Match], tie_breakers: Optional[Sequence[str]] = None
) -> List[StandingRow]:
    """
    Order rows by the configured tie-breaks, applied in sequence to each tied
    group; team id is the final fallback. Assigns rank 1..n.
    """
    keys = list(tie_breakers or DEFAULT_TIE_BREAKERS)
    unknown = [k for k in keys if k not in TIE_BREAKERS]
    if unknown:
        raise ConfigurationError(f"Unknown tie-breakers: {', '.join(unknown)}", code="UNKNOWN_TIE_BREAKER")

    ordered = _order(list(rows), keys, matches)
    for i, row in enumerate(ordered, start=1):
        row.rank = i
    return ordered


def stage_team_ids(matches: Iterable[Match]) -> List[int]:
    ids = set()
    for match in matches:
        if match.team_a_id is not None:
            ids.add(match.team_a_id)
        if match.team_b_id is not None:
            ids.add(match.team_b_id)
    return sorted(ids)


def stage_standings(session: Session, division: Division, stage: str) -> List[StandingRow]:
    matches = session.exec(
        select(Match).where(Match.division_id == division.id, Match.stage == stage).order_by(Match.id)
    ).all()
    rows = compute_standings(stage_team_ids(matches), matches)
    return rank_standings(rows.values(), matches, division.tie_breakers)


def ranked_stages(session: Session, division_id: int) -> List[str]:
    stages = session.exec(
        select(Match.stage)
        .where(Match.division_id == division_id, Match.match_type.in_(RANKED_MATCH_TYPES))
        .distinct()
    ).all()
    return sorted(stages)


def division_standings(session: Session, division_id: int) -> Dict[str, List[StandingRow]]:
    """Live standings of every pool / round-robin stage of a division."""
    division = session.get(Division, division_id)
    if not division:
        raise NotFoundError(f"Division {division_id} not found")
    return {stage: stage_standings(session, division, stage) for stage in ranked_stages(session, division_id)}


def write_standings(session: Session, division_id: int) -> int:
    """Replace the StandingsEntry rows of a division. Returns rows written. Does not commit."""
    standings = division_standings(session, division_id)
    session.connection().execute(delete(StandingsEntry).where(StandingsEntry.division_id == division_id))

    written = 0
    now = utc_now()
    for stage, rows in standings.items():
        for row in rows:
            session.add(
                StandingsEntry(
                    division_id=division_id,
                    stage=stage,
                    team_id=row.team_id,
                    rank=row.rank,
                    played=row.played,
                    wins=row.wins,
                    losses=row.losses,
                    draws=row.draws,
                    points_for=row.points_for,
                    points_against=row.points_against,
                    point_differential=row.point_differential,
                    ranking_points=row.ranking_points,
                    updated_at=now,
                )
            )
            written += 1
    return written


class DatabaseStandingsAggregator:
    """Recomputes StandingsEntry rows in a session of its own."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def recompute(self, division_id: int) -> None:
        with Session(self.engine) as session:
            written = write_standings(session, division_id)
            session.commit()
        logger.info("Recomputed standings for division %s (%d rows)", division_id, written)
