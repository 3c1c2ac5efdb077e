"""
Match lifecycle against the database: transitions, compare-and-swap, submission,
standings trigger.
"""
import logging

import pytest
from sqlalchemy import update
from sqlmodel import Session, select

from competition_engine.errors import (
    ActionValidationError,
    ImmutableMatchError,
    InvalidTransitionError,
    MatchConflictError,
    MatchPermissionError,
    RatingSubmissionError,
    ScoreValidationError,
)
from competition_engine.models.event_organizer import EventOrganizer
from competition_engine.models.match import Match
from competition_engine.models.standings_entry import StandingsEntry
from competition_engine.services import match_lifecycle
from competition_engine.services.dupr_service import SubmissionResult
from competition_engine.services.match_lifecycle import (
    apply_match_action,
    compare_and_swap,
    dispute_score,
    edit_score,
    finalize_score,
    get_available_actions,
    propose_score,
    record_forfeit,
    release_submission_claim,
    retry_on_conflict,
    sign_score,
    submit_to_rating_service,
    void_score,
)
from tests.factories import ORGANIZER, create_division, create_match, create_teams, create_tournament

WIN_A = [{"a": 11, "b": 9}, {"a": 9, "b": 11}, {"a": 11, "b": 7}]
WIN_B = [{"a": 5, "b": 11}, {"a": 8, "b": 11}]


class RecordingStandings:
    def __init__(self):
        self.calls = []

    def recompute(self, division_id):
        self.calls.append(division_id)


class BrokenStandings:
    def recompute(self, division_id):
        raise RuntimeError("standings store unavailable")


class FakeRatingService:
    def __init__(self, result=None, error=None):
        self.result = result or SubmissionResult(success=True, submission_id="dupr-123")
        self.error = error
        self.submitted = []

    def submit(self, match, teams, tournament=None):
        self.submitted.append((match.id, [t.id for t in teams]))
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def dupr_match(session: Session):
    """Best-of-3 DUPR-eligible match: team 1 (p1a, p1b) vs team 2 (p2a, p2b)."""
    tournament = create_tournament(session, dupr_eligible=True)
    division = create_division(session, tournament, best_of=3)
    team1, team2 = create_teams(session, division, 2)
    match = create_match(session, division, team1, team2)
    return {"tournament": tournament, "division": division, "team1": team1, "team2": team2, "match_id": match.id}


def test_propose_sign_finalize(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    standings = RecordingStandings()

    proposed = propose_score(session, match_id, "p1a", WIN_A).match
    assert proposed.score_state == "proposed"
    assert proposed.proposed_by == "p1a"
    assert proposed.proposed_by_side == "A"
    assert proposed.winner_team_id == dupr_match["team1"].id
    assert proposed.version == 2

    signed = sign_score(session, match_id, "p2b").match
    assert signed.score_state == "signed"
    assert signed.confirmations[0]["user_id"] == "p2b"
    assert signed.confirmations[0]["side"] == "B"

    official = finalize_score(session, match_id, ORGANIZER, standings=standings).match
    assert official.score_state == "official"
    assert official.games == WIN_A
    assert official.finalized_by == ORGANIZER
    assert standings.calls == [dupr_match["division"].id]


def test_incomplete_scores_leave_match_unchanged(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    with pytest.raises(ScoreValidationError) as exc:
        propose_score(session, match_id, "p1a", WIN_A[:2])
    assert exc.value.game_index == 3

    match = session.get(Match, match_id)
    assert match.score_state == "none"
    assert match.version == 1


def test_own_side_cannot_sign(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    propose_score(session, match_id, "p1a", WIN_A)
    with pytest.raises(MatchPermissionError) as exc:
        sign_score(session, match_id, "p1b")
    assert exc.value.code == "OWN_SIDE_CONFIRMATION"


def test_sign_without_proposal(session: Session, dupr_match):
    with pytest.raises(InvalidTransitionError) as exc:
        sign_score(session, dupr_match["match_id"], "p2a")
    assert exc.value.code == "OPPONENT_MUST_PROPOSE_FIRST"


def test_playing_organizer_cannot_propose_but_can_sign(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    session.add(EventOrganizer(tournament_id=dupr_match["tournament"].id, user_id="p1a"))
    session.commit()

    with pytest.raises(MatchPermissionError) as exc:
        propose_score(session, match_id, "p1a", WIN_A)
    assert exc.value.code == "ORGANIZER_PARTICIPANT"

    propose_score(session, match_id, "p2a", WIN_B)
    assert sign_score(session, match_id, "p1a").match.score_state == "signed"


def test_finalize_disputed_uses_recorded_proposal(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    propose_score(session, match_id, "p2a", WIN_B)
    disputed = dispute_score(session, match_id, "p1a", "second game was 11-9").match
    assert disputed.score_state == "disputed"
    assert disputed.dispute_reason == "second game was 11-9"

    official = finalize_score(session, match_id, ORGANIZER, standings=RecordingStandings()).match
    assert official.score_state == "official"
    assert official.winner_team_id == dupr_match["team2"].id


def test_finalize_incomplete_payload_rejected(session: Session, dupr_match):
    with pytest.raises(ScoreValidationError):
        finalize_score(session, dupr_match["match_id"], ORGANIZER, [{"a": 11, "b": 9}, {"a": 9, "b": 11}])


def test_finalize_without_any_scores_rejected(session: Session, dupr_match):
    with pytest.raises(ScoreValidationError):
        finalize_score(session, dupr_match["match_id"], ORGANIZER)


def test_edit_recomputes_winner(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    standings = RecordingStandings()
    finalize_score(session, match_id, ORGANIZER, WIN_A, standings=standings)

    edited = edit_score(session, match_id, ORGANIZER, WIN_B, standings=standings).match
    assert edited.score_state == "official"
    assert edited.winner_team_id == dupr_match["team2"].id
    assert len(standings.calls) == 2


def test_submit_makes_match_immutable(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    finalize_score(session, match_id, ORGANIZER, WIN_A, standings=RecordingStandings())
    service = FakeRatingService()

    result = submit_to_rating_service(session, match_id, ORGANIZER, rating_service=service)
    assert result.match.score_state == "submittedToDupr"
    assert result.match.dupr_submitted is True
    assert result.match.dupr_submission_pending is False
    assert result.match.dupr_submission_id == "dupr-123"
    assert service.submitted == [(match_id, [dupr_match["team1"].id, dupr_match["team2"].id])]

    with pytest.raises(ImmutableMatchError):
        edit_score(session, match_id, ORGANIZER, WIN_B)
    with pytest.raises(ImmutableMatchError):
        finalize_score(session, match_id, ORGANIZER, WIN_B)
    with pytest.raises(ImmutableMatchError):
        dispute_score(session, match_id, "p2a", "late complaint")
    with pytest.raises(ImmutableMatchError):
        submit_to_rating_service(session, match_id, ORGANIZER, rating_service=service)


def test_rejected_submission_keeps_match_official(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    finalize_score(session, match_id, ORGANIZER, WIN_A, standings=RecordingStandings())
    service = FakeRatingService(result=SubmissionResult(success=False, error="player not found"))

    with pytest.raises(RatingSubmissionError):
        submit_to_rating_service(session, match_id, ORGANIZER, rating_service=service)

    match = session.get(Match, match_id)
    assert match.score_state == "official"
    assert match.dupr_submission_pending is False
    assert match.dupr_submission_error == "player not found"


def test_submission_exception_releases_claim(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    finalize_score(session, match_id, ORGANIZER, WIN_A, standings=RecordingStandings())

    with pytest.raises(RatingSubmissionError):
        submit_to_rating_service(session, match_id, ORGANIZER, rating_service=FakeRatingService(error=TimeoutError("timed out")))

    match = session.get(Match, match_id)
    assert match.dupr_submission_pending is False
    # Still editable after a failed submission
    assert edit_score(session, match_id, ORGANIZER, WIN_B, standings=RecordingStandings()).match.winner_team_id


def test_forfeit_is_official_and_not_submittable(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    forfeited = record_forfeit(session, match_id, ORGANIZER, "B", standings=RecordingStandings()).match
    assert forfeited.score_state == "official"
    assert forfeited.is_forfeit is True
    assert forfeited.games is None
    assert forfeited.winner_team_id == dupr_match["team2"].id

    with pytest.raises(InvalidTransitionError) as exc:
        submit_to_rating_service(session, match_id, ORGANIZER, rating_service=FakeRatingService())
    assert exc.value.code == "FORFEIT_NOT_SUBMITTABLE"


def test_stale_version_is_a_conflict(session: Session, dupr_match):
    match = session.get(Match, dupr_match["match_id"])
    # Another writer moves the row on; the loaded object still holds version 1
    session.connection().execute(update(Match).where(Match.id == match.id).values(version=Match.version + 1))

    with pytest.raises(MatchConflictError) as exc:
        compare_and_swap(session, match, {"dispute_reason": "stale"})
    assert exc.value.code == "CONCURRENT_UPDATE"


def test_retry_on_conflict_reruns_operation(session: Session):
    attempts = []

    def operation():
        attempts.append(1)
        if len(attempts) < 3:
            raise MatchConflictError("lost the race")
        return "done"

    assert retry_on_conflict(session, operation, retries=3) == "done"
    assert len(attempts) == 3


def test_retry_on_conflict_gives_up(session: Session):
    def operation():
        raise MatchConflictError("lost again")

    with pytest.raises(MatchConflictError):
        retry_on_conflict(session, operation, retries=1)


def test_submission_in_flight_is_not_retried(session: Session):
    attempts = []

    def operation():
        attempts.append(1)
        raise MatchConflictError("busy", code="SUBMISSION_IN_FLIGHT")

    with pytest.raises(MatchConflictError):
        retry_on_conflict(session, operation, retries=5)
    assert len(attempts) == 1


def test_standings_failure_does_not_undo_finalize(session: Session, dupr_match, caplog):
    match_id = dupr_match["match_id"]
    with caplog.at_level(logging.ERROR):
        result = finalize_score(session, match_id, ORGANIZER, WIN_A, standings=BrokenStandings())
    assert result.match.score_state == "official"
    assert "Standings recompute failed" in caplog.text


def test_default_standings_aggregator_writes_rows(session: Session, dupr_match):
    finalize_score(session, dupr_match["match_id"], ORGANIZER, WIN_A)
    rows = session.exec(select(StandingsEntry).order_by(StandingsEntry.rank)).all()
    assert [r.team_id for r in rows] == [dupr_match["team1"].id, dupr_match["team2"].id]
    assert rows[0].wins == 1
    assert rows[0].ranking_points == 2


def test_unknown_action_rejected(session: Session, dupr_match):
    with pytest.raises(ActionValidationError) as exc:
        apply_match_action(session, dupr_match["match_id"], "p1a", "undo")
    assert exc.value.code == "UNKNOWN_ACTION"


def test_available_actions_for_viewer(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    propose_score(session, match_id, "p1a", WIN_A)
    _, actions = get_available_actions(session, match_id, "p2a")
    assert actions == ["sign", "dispute"]
    _, organizer_actions = get_available_actions(session, match_id, ORGANIZER)
    assert organizer_actions == ["finalize", "forfeit"]


def test_void_returns_disputed_match_to_unscored(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    propose_score(session, match_id, "p1a", WIN_A)
    dispute_score(session, match_id, "p2a", "we won the third game")

    result = void_score(session, match_id, ORGANIZER)
    assert result.previous_state == "disputed"
    voided = result.match
    assert voided.score_state == "none"
    assert voided.games is None
    assert voided.winner_team_id is None
    assert voided.proposed_by is None
    assert voided.confirmations == []
    assert voided.dispute_reason is None
    assert voided.version == 4

    # Players start over with a fresh proposal
    assert propose_score(session, match_id, "p2a", WIN_B).match.winner_team_id == dupr_match["team2"].id


def test_void_needs_a_dispute_and_an_organizer(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    propose_score(session, match_id, "p1a", WIN_A)
    with pytest.raises(InvalidTransitionError):
        void_score(session, match_id, ORGANIZER)

    dispute_score(session, match_id, "p2a", "wrong score")
    with pytest.raises(MatchPermissionError):
        void_score(session, match_id, "p1b")
    assert session.get(Match, match_id, populate_existing=True).score_state == "disputed"


def test_concurrent_signatures_only_one_lands(session: Session, dupr_match, monkeypatch):
    match_id = dupr_match["match_id"]
    propose_score(session, match_id, "p1a", WIN_A)
    load = match_lifecycle.load_match_context

    def load_then_partner_signs(db, target_id, user_id):
        ctx = load(db, target_id, user_id)
        if user_id == "p2a":
            # p2b signs from another session after p2a's read
            with Session(db.get_bind()) as other:
                sign_score(other, target_id, "p2b")
        return ctx

    monkeypatch.setattr(match_lifecycle, "load_match_context", load_then_partner_signs)
    with pytest.raises(MatchConflictError) as exc:
        sign_score(session, match_id, "p2a")
    assert exc.value.code == "CONCURRENT_UPDATE"

    match = session.get(Match, match_id, populate_existing=True)
    assert match.score_state == "signed"
    assert [c["user_id"] for c in match.confirmations] == ["p2b"]
    assert match.version == 3


def _strand_submission_claim(session: Session, match_id: int) -> None:
    # A submit that claimed the match and then died before releasing it
    session.connection().execute(
        update(Match).where(Match.id == match_id).values(dupr_submission_pending=True, version=Match.version + 1)
    )
    session.commit()


def test_released_claim_allows_resubmission(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    finalize_score(session, match_id, ORGANIZER, WIN_A, standings=RecordingStandings())
    _strand_submission_claim(session, match_id)

    with pytest.raises(MatchConflictError) as exc:
        submit_to_rating_service(session, match_id, ORGANIZER, rating_service=FakeRatingService())
    assert exc.value.code == "SUBMISSION_IN_FLIGHT"

    released = release_submission_claim(session, match_id, ORGANIZER)
    assert released.dupr_submission_pending is False
    assert released.score_state == "official"
    assert "released" in released.dupr_submission_error

    result = submit_to_rating_service(session, match_id, ORGANIZER, rating_service=FakeRatingService())
    assert result.match.score_state == "submittedToDupr"
    assert result.match.dupr_submission_error is None


def test_release_claim_guards(session: Session, dupr_match):
    match_id = dupr_match["match_id"]
    finalize_score(session, match_id, ORGANIZER, WIN_A, standings=RecordingStandings())

    with pytest.raises(InvalidTransitionError) as exc:
        release_submission_claim(session, match_id, ORGANIZER)
    assert exc.value.code == "NO_SUBMISSION_IN_FLIGHT"

    _strand_submission_claim(session, match_id)
    with pytest.raises(MatchPermissionError):
        release_submission_claim(session, match_id, "p1a")
    assert session.get(Match, match_id, populate_existing=True).dupr_submission_pending is True
