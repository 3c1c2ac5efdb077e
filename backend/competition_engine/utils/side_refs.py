"""
Match side references.

A side is either a known team or a pending reference to the outcome of an
earlier match ("Loser of Semifinal 1"). Bracket advancement turns pending
references into resolved entrants; a match cannot be scored until both sides
are resolved.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from competition_engine.models.match import SIDE_A, SIDE_B, Match


@dataclass(frozen=True)
class ResolvedEntrant:
    team_id: int


@dataclass(frozen=True)
class PendingReference:
    source_match_id: Optional[int]  # None until the source match itself exists
    role: Optional[str]  # "WINNER" | "LOSER"
    label: str


SideRef = Union[ResolvedEntrant, PendingReference]


def side_ref(match: Match, side: str) -> SideRef:
    if side == SIDE_A:
        team_id, source_id, role, label = (
            match.team_a_id,
            match.source_match_a_id,
            match.source_a_role,
            match.placeholder_side_a,
        )
    elif side == SIDE_B:
        team_id, source_id, role, label = (
            match.team_b_id,
            match.source_match_b_id,
            match.source_b_role,
            match.placeholder_side_b,
        )
    else:
        raise ValueError(f"Unknown side: {side}")

    if team_id is not None:
        return ResolvedEntrant(team_id=team_id)
    return PendingReference(source_match_id=source_id, role=role, label=label)


def match_sides(match: Match) -> Tuple[SideRef, SideRef]:
    return side_ref(match, SIDE_A), side_ref(match, SIDE_B)


def sides_resolved(match: Match) -> bool:
    return all(isinstance(ref, ResolvedEntrant) for ref in match_sides(match))


def side_of_team(match: Match, team_id: Optional[int]) -> Optional[str]:
    if team_id is None:
        return None
    if match.team_a_id == team_id:
        return SIDE_A
    if match.team_b_id == team_id:
        return SIDE_B
    return None


def team_for_side(match: Match, side: Optional[str]) -> Optional[int]:
    if side == SIDE_A:
        return match.team_a_id
    if side == SIDE_B:
        return match.team_b_id
    return None


def loser_team_id(match: Match) -> Optional[int]:
    if match.winner_team_id is None:
        return None
    if match.winner_team_id == match.team_a_id:
        return match.team_b_id
    if match.winner_team_id == match.team_b_id:
        return match.team_a_id
    return None
