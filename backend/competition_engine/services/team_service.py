"""
Team registration lifecycle.

Teams are never deleted, only status-transitioned:

  register (1 of 2 players) -> awaiting_partner --join--> active
  register (complete)       -> active
  active --leave--> awaiting_partner   (captaincy passes to the remaining player)
  any    --withdraw--> withdrawn       (unfinished matches are forfeited)

A player may be on at most one non-withdrawn team per division.
"""

import logging
from typing import List, Optional, Sequence

from sqlmodel import Session, or_, select

from competition_engine.errors import NotFoundError, RegistrationError
from competition_engine.models.division import Division
from competition_engine.models.match import Match
from competition_engine.models.team import TEAM_ACTIVE, TEAM_AWAITING_PARTNER, TEAM_WITHDRAWN, Team
from competition_engine.services.match_lifecycle import record_withdrawal_forfeit
from competition_engine.services.standings_service import StandingsAggregator
from competition_engine.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


def team_size(division: Division) -> int:
    return 1 if division.play_type == "singles" else 2


def _load_team(session: Session, team_id: int) -> Team:
    team = session.get(Team, team_id)
    if not team:
        raise NotFoundError(f"Team {team_id} not found")
    return team


def registered_players(session: Session, division_id: int, exclude_team_id: Optional[int] = None) -> set:
    """Player ids on non-withdrawn teams of a division."""
    teams = session.exec(
        select(Team).where(Team.division_id == division_id, Team.status != TEAM_WITHDRAWN)
    ).all()
    players = set()
    for team in teams:
        if team.id != exclude_team_id:
            players.update(team.player_ids)
    return players


def validate_players(session: Session, division_id: int, player_ids: Sequence[str], exclude_team_id: Optional[int] = None) -> Optional[str]:
    """Return an error string if any player is blank, repeated, or already on another team."""
    if any(not p or not str(p).strip() for p in player_ids):
        return "Player ids must be non-empty"
    if len(set(player_ids)) != len(player_ids):
        return "A player cannot appear twice on one team"
    taken = registered_players(session, division_id, exclude_team_id) & set(player_ids)
    if taken:
        return f"Already registered in this division: {', '.join(sorted(taken))}"
    return None


def register_team(
    session: Session,
    division_id: int,
    player_ids: Sequence[str],
    captain_id: Optional[str] = None,
    name: Optional[str] = None,
    seeking_partner: bool = False,
) -> Team:
    division = session.get(Division, division_id)
    if not division:
        raise NotFoundError(f"Division {division_id} not found")

    players = list(player_ids)
    size = team_size(division)
    if not players:
        raise RegistrationError("At least one player is required", code="NO_PLAYERS")
    if len(players) > size:
        raise RegistrationError(f"{division.play_type} teams have at most {size} player(s)", code="TOO_MANY_PLAYERS")

    error = validate_players(session, division_id, players)
    if error:
        raise RegistrationError(error, code="PLAYER_ALREADY_REGISTERED")

    captain = captain_id or players[0]
    if captain not in players:
        raise RegistrationError("Captain must be one of the team's players", code="INVALID_CAPTAIN")

    complete = len(players) == size
    team = Team(
        division_id=division_id,
        name=name,
        player_ids=players,
        captain_id=captain,
        status=TEAM_ACTIVE if complete else TEAM_AWAITING_PARTNER,
        seeking_partner=seeking_partner and not complete,
    )
    session.add(team)
    session.commit()
    session.refresh(team)
    logger.info("Registered team %s in division %s (%s)", team.id, division_id, team.status)
    return team


def join_team(session: Session, team_id: int, player_id: str) -> Team:
    team = _load_team(session, team_id)
    division = session.get(Division, team.division_id)

    if team.status == TEAM_WITHDRAWN:
        raise RegistrationError("Team has withdrawn", code="TEAM_WITHDRAWN")
    if len(team.player_ids) >= team_size(division):
        raise RegistrationError("Team is already full", code="TEAM_FULL")

    error = validate_players(session, team.division_id, [player_id], exclude_team_id=team.id)
    if error is None and player_id in team.player_ids:
        error = "Player is already on this team"
    if error:
        raise RegistrationError(error, code="PLAYER_ALREADY_REGISTERED")

    team.player_ids = list(team.player_ids) + [player_id]
    if len(team.player_ids) == team_size(division):
        team.status = TEAM_ACTIVE
        team.seeking_partner = False
    team.updated_at = utc_now()
    session.add(team)
    session.commit()
    session.refresh(team)
    logger.info("Player %s joined team %s", player_id, team.id)
    return team


def leave_team(session: Session, team_id: int, player_id: str, *, standings: Optional[StandingsAggregator] = None) -> Team:
    """Remove a player. The last player leaving withdraws the team."""
    team = _load_team(session, team_id)
    if team.status == TEAM_WITHDRAWN:
        raise RegistrationError("Team has withdrawn", code="TEAM_WITHDRAWN")
    if player_id not in team.player_ids:
        raise RegistrationError(f"Player {player_id} is not on team {team_id}", code="NOT_ON_TEAM")

    remaining = [p for p in team.player_ids if p != player_id]
    if not remaining:
        return withdraw_team(session, team_id, standings=standings)

    team.player_ids = remaining
    if team.captain_id == player_id:
        team.captain_id = remaining[0]
    team.status = TEAM_AWAITING_PARTNER
    team.updated_at = utc_now()
    session.add(team)
    session.commit()
    session.refresh(team)
    logger.info("Player %s left team %s; captain is %s", player_id, team.id, team.captain_id)
    return team


def team_matches(session: Session, team_id: int) -> List[Match]:
    return list(
        session.exec(
            select(Match).where(or_(Match.team_a_id == team_id, Match.team_b_id == team_id)).order_by(Match.id)
        ).all()
    )


def withdraw_team(session: Session, team_id: int, *, standings: Optional[StandingsAggregator] = None) -> Team:
    """Withdraw a team and forfeit its unfinished matches to the opponents."""
    team = _load_team(session, team_id)
    if team.status == TEAM_WITHDRAWN:
        return team

    team.status = TEAM_WITHDRAWN
    team.seeking_partner = False
    team.updated_at = utc_now()
    session.add(team)
    session.commit()

    forfeits = 0
    for match in team_matches(session, team_id):
        if record_withdrawal_forfeit(session, match.id, team_id, standings=standings):
            forfeits += 1

    session.refresh(team)
    logger.info("Team %s withdrew from division %s; %d match(es) forfeited", team.id, team.division_id, forfeits)
    return team
