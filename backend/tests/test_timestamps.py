"""
Stored timestamps are timezone-aware UTC.
"""
from datetime import timedelta

from sqlmodel import Session

from competition_engine.models.match import Match
from competition_engine.models.team import Team
from competition_engine.models.tournament import Tournament
from competition_engine.services.match_lifecycle import finalize_score
from competition_engine.utils.timestamps import utc_now
from tests.factories import ORGANIZER, create_division, create_match, create_teams, create_tournament


class NoStandings:
    def recompute(self, division_id):
        pass


def test_utc_now_is_aware():
    assert utc_now().utcoffset() == timedelta(0)


def test_model_defaults_are_aware():
    team = Team(division_id=1, player_ids=["amy", "ben"], captain_id="amy")
    match = Match(tournament_id=1, division_id=1, stage="Main Bracket", match_type="BRACKET")
    tournament = Tournament(name="Spring Open")
    for value in (team.created_at, team.updated_at, match.created_at, match.updated_at, tournament.created_at):
        assert value.tzinfo is not None
        assert value.utcoffset() == timedelta(0)


def test_transition_timestamps_persist(session: Session):
    division = create_division(session, create_tournament(session))
    team1, team2 = create_teams(session, division, 2)
    match = create_match(session, division, team1, team2)

    official = finalize_score(session, match.id, ORGANIZER, [{"a": 11, "b": 5}], standings=NoStandings()).match
    assert official.finalized_at is not None
    assert official.updated_at >= official.created_at
