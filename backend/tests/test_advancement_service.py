"""
Bracket advancement: byes, next-round creation, bronze feeding, edits, bulk resolve.
"""
import pytest
from sqlmodel import Session, select

from competition_engine.errors import MatchConflictError, MatchPermissionError
from competition_engine.models.match import Match
from competition_engine.services import match_lifecycle
from competition_engine.services.advancement_service import (
    apply_advancement_for_final_match,
    resolve_all_dependencies,
)
from competition_engine.services.generation_service import generate_division_matches
from competition_engine.services.match_lifecycle import edit_score, finalize_score, propose_score
from tests.factories import ORGANIZER, create_division, create_teams, create_tournament

A_WINS = [{"a": 11, "b": 5}]
B_WINS = [{"a": 5, "b": 11}]


def find(session: Session, division_id: int, stage: str, round_number: int, position: int):
    return session.exec(
        select(Match).where(
            Match.division_id == division_id,
            Match.stage == stage,
            Match.round_number == round_number,
            Match.bracket_position == position,
        )
    ).first()


@pytest.fixture
def five_team_bracket(session: Session):
    """Seeds 1-5, bracket of 8 with bronze: seeds 1, 2, 3 get byes."""
    tournament = create_tournament(session)
    division = create_division(session, tournament, main_format="single_elimination", bronze_match=True)
    teams = create_teams(session, division, 5)
    result = generate_division_matches(session, division.id)
    return division, [t.id for t in teams], result


def test_byes_resolve_at_generation(session: Session, five_team_bracket):
    division, t, result = five_team_bracket

    assert result.byes == 3
    assert result.stages == ["Main Bracket", "Bronze Match"]
    assert len(result.matches) == 3

    opening = find(session, division.id, "Main Bracket", 1, 2)
    assert (opening.team_a_id, opening.team_b_id) == (t[3], t[4])
    assert opening.placeholder_side_a == "Seed 4"

    # Seeds 2 and 3 both had byes, so their semifinal already exists
    semifinal_2 = find(session, division.id, "Main Bracket", 2, 2)
    assert (semifinal_2.team_a_id, semifinal_2.team_b_id) == (t[1], t[2])
    assert semifinal_2.source_match_a_id is None

    assert find(session, division.id, "Main Bracket", 2, 1) is None

    bronze = find(session, division.id, "Bronze Match", 999, 1)
    assert bronze.team_a_id is None and bronze.team_b_id is None
    assert bronze.source_match_b_id == semifinal_2.id
    assert bronze.source_b_role == "LOSER"
    assert bronze.placeholder_side_a == "Loser of Semifinal 1"


def test_results_flow_to_final_and_bronze(session: Session, five_team_bracket):
    division, t, _ = five_team_bracket
    opening = find(session, division.id, "Main Bracket", 1, 2)

    result = finalize_score(session, opening.id, ORGANIZER, A_WINS)
    assert result.advanced_count == 1

    semifinal_1 = find(session, division.id, "Main Bracket", 2, 1)
    assert (semifinal_1.team_a_id, semifinal_1.team_b_id) == (t[0], t[3])
    assert semifinal_1.source_match_b_id == opening.id
    assert semifinal_1.source_b_role == "WINNER"
    assert semifinal_1.placeholder_side_b == "Winner of Quarterfinal 2"

    semifinal_2 = find(session, division.id, "Main Bracket", 2, 2)
    finalize_score(session, semifinal_1.id, ORGANIZER, A_WINS)
    assert find(session, division.id, "Main Bracket", 3, 1) is None
    finalize_score(session, semifinal_2.id, ORGANIZER, B_WINS)

    final = find(session, division.id, "Main Bracket", 3, 1)
    assert (final.team_a_id, final.team_b_id) == (t[0], t[2])
    bronze = find(session, division.id, "Bronze Match", 999, 1)
    assert (bronze.team_a_id, bronze.team_b_id) == (t[3], t[1])

    # The final feeds nothing
    assert finalize_score(session, final.id, ORGANIZER, A_WINS).advanced_count == 0


def test_edit_rewrites_unscored_downstream(session: Session, five_team_bracket):
    division, t, _ = five_team_bracket
    finalize_score(session, find(session, division.id, "Main Bracket", 1, 2).id, ORGANIZER, A_WINS)
    semifinal_1 = find(session, division.id, "Main Bracket", 2, 1)
    finalize_score(session, semifinal_1.id, ORGANIZER, A_WINS)
    finalize_score(session, find(session, division.id, "Main Bracket", 2, 2).id, ORGANIZER, A_WINS)

    edited = edit_score(session, semifinal_1.id, ORGANIZER, B_WINS)
    assert edited.advanced_count == 2

    final = find(session, division.id, "Main Bracket", 3, 1)
    bronze = find(session, division.id, "Bronze Match", 999, 1)
    assert final.team_a_id == t[3]
    assert bronze.team_a_id == t[0]


def test_edit_leaves_scored_downstream_alone(session: Session, five_team_bracket):
    division, t, _ = five_team_bracket
    opening = find(session, division.id, "Main Bracket", 1, 2)
    finalize_score(session, opening.id, ORGANIZER, A_WINS)
    semifinal_1 = find(session, division.id, "Main Bracket", 2, 1)
    finalize_score(session, semifinal_1.id, ORGANIZER, A_WINS)

    edit_score(session, opening.id, ORGANIZER, B_WINS)

    semifinal_1 = find(session, division.id, "Main Bracket", 2, 1)
    assert semifinal_1.team_b_id == t[3]


def test_advancement_is_idempotent(session: Session, five_team_bracket):
    division, _, _ = five_team_bracket
    opening = find(session, division.id, "Main Bracket", 1, 2)
    finalize_score(session, opening.id, ORGANIZER, A_WINS)

    assert apply_advancement_for_final_match(session, opening.id) == 0
    semifinals = session.exec(
        select(Match).where(Match.division_id == division.id, Match.round_number == 2)
    ).all()
    assert len(semifinals) == 2


def test_unscored_match_does_not_advance(session: Session, five_team_bracket):
    division, _, _ = five_team_bracket
    opening = find(session, division.id, "Main Bracket", 1, 2)
    assert apply_advancement_for_final_match(session, opening.id) == 0


def test_resolve_all_dependencies(session: Session):
    tournament = create_tournament(session)
    division = create_division(session, tournament, main_format="single_elimination")
    t = [team.id for team in create_teams(session, division, 4)]
    generate_division_matches(session, division.id)

    # Results written without running advancement
    for position, winner in ((1, t[0]), (2, t[1])):
        match = find(session, division.id, "Main Bracket", 1, position)
        match.score_state = "official"
        match.games = A_WINS
        match.winner_team_id = winner
        session.add(match)
    session.commit()

    first = resolve_all_dependencies(session, division.id)
    assert first["matches_processed"] == 2
    assert first["teams_advanced"] == 1
    final = find(session, division.id, "Main Bracket", 2, 1)
    assert (final.team_a_id, final.team_b_id) == (t[0], t[1])

    second = resolve_all_dependencies(session, division.id)
    assert second["teams_advanced"] == 0
    assert second["unknown_after"] == 0


def test_rewritten_side_invalidates_stale_reads(session: Session, monkeypatch):
    tournament = create_tournament(session)
    division = create_division(session, tournament, main_format="single_elimination")
    t = [team.id for team in create_teams(session, division, 4)]
    generate_division_matches(session, division.id)
    semifinal_1 = find(session, division.id, "Main Bracket", 1, 1)
    finalize_score(session, semifinal_1.id, ORGANIZER, A_WINS)
    finalize_score(session, find(session, division.id, "Main Bracket", 1, 2).id, ORGANIZER, A_WINS)

    final = find(session, division.id, "Main Bracket", 2, 1)
    final_id, semifinal_id, version = final.id, semifinal_1.id, final.version
    assert (final.team_a_id, final.team_b_id) == (t[0], t[1])

    load = match_lifecycle.load_match_context

    def load_then_edit_feeder(db, match_id, user_id):
        ctx = load(db, match_id, user_id)
        if match_id == final_id:
            # The organizer corrects the semifinal after this read of the final
            with Session(db.get_bind()) as other:
                edit_score(other, semifinal_id, ORGANIZER, B_WINS)
        return ctx

    monkeypatch.setattr(match_lifecycle, "load_match_context", load_then_edit_feeder)
    with pytest.raises(MatchConflictError) as exc:
        propose_score(session, final_id, "p1a", A_WINS)
    assert exc.value.code == "CONCURRENT_UPDATE"
    monkeypatch.undo()

    final = session.get(Match, final_id, populate_existing=True)
    assert final.team_a_id == t[3]
    assert final.score_state == "none"
    assert final.proposed_by is None
    assert final.version == version + 1

    # Seed 1 is out of the final now
    with pytest.raises(MatchPermissionError):
        propose_score(session, final_id, "p1a", A_WINS)
