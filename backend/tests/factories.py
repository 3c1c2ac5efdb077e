"""Row builders shared by the database-backed tests."""
from typing import List, Optional

from sqlmodel import Session

from competition_engine.models.division import Division
from competition_engine.models.event_organizer import EventOrganizer
from competition_engine.models.match import MATCH_TYPE_ROUND_ROBIN, Match
from competition_engine.models.team import Team
from competition_engine.models.tournament import Tournament

ORGANIZER = "org-1"


def create_tournament(session: Session, is_league: bool = False, dupr_eligible: bool = False,
                      organizers: Optional[List[str]] = None) -> Tournament:
    tournament = Tournament(name="Spring Open", is_league=is_league, dupr_eligible=dupr_eligible)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    for user_id in organizers if organizers is not None else [ORGANIZER]:
        session.add(EventOrganizer(tournament_id=tournament.id, user_id=user_id))
    session.commit()
    return tournament


def create_division(session: Session, tournament: Tournament, **fields) -> Division:
    values = {"name": "Open Doubles", "seeding_method": "manual"}
    values.update(fields)
    division = Division(tournament_id=tournament.id, **values)
    session.add(division)
    session.commit()
    session.refresh(division)
    return division


def create_teams(session: Session, division: Division, count: int, prefix: str = "p") -> List[Team]:
    """count doubles teams with players <prefix><n>a / <prefix><n>b, in seed order."""
    teams = []
    for n in range(1, count + 1):
        team = Team(
            division_id=division.id,
            name=f"Team {n}",
            player_ids=[f"{prefix}{n}a", f"{prefix}{n}b"],
            captain_id=f"{prefix}{n}a",
        )
        session.add(team)
        teams.append(team)
    session.commit()
    for team in teams:
        session.refresh(team)
    return teams


def create_match(session: Session, division: Division, team_a: Optional[Team], team_b: Optional[Team],
                 **fields) -> Match:
    values = {
        "stage": "Round Robin",
        "match_type": MATCH_TYPE_ROUND_ROBIN,
        "round_number": 1,
        "bracket_position": 1,
        "placeholder_side_a": team_a.display_name if team_a else "TBD",
        "placeholder_side_b": team_b.display_name if team_b else "TBD",
    }
    values.update(fields)
    match = Match(
        tournament_id=division.tournament_id,
        division_id=division.id,
        team_a_id=team_a.id if team_a else None,
        team_b_id=team_b.id if team_b else None,
        **values,
    )
    session.add(match)
    session.commit()
    session.refresh(match)
    return match
