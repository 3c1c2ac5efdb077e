"""
Match Lifecycle State Machine.

    none -> proposed -> signed -> official -> submittedToDupr
     ^        \\          /
     +--void-- disputed --

Every transition is a compare-and-swap on Match.version:
  read match + version -> run guards -> UPDATE ... WHERE id = :id AND version = :read
Zero rows updated means another transition won; MatchConflictError is raised
and nothing is retried here (see retry_on_conflict for callers that want it).

After a transition to official:
  - bracket/bronze matches push their result downstream (advancement_service)
  - league and pool matches trigger a standings recompute; aggregator
    failures are logged and never undo the transition
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import update
from sqlmodel import Session, select

from competition_engine import config
from competition_engine.errors import (
    ActionValidationError,
    MatchConflictError,
    NotFoundError,
    RatingSubmissionError,
    ScoreValidationError,
)
from competition_engine.models.division import Division
from competition_engine.models.event_organizer import EventOrganizer
from competition_engine.models.match import (
    MATCH_TYPE_BRACKET,
    MATCH_TYPE_BRONZE,
    SCORE_DISPUTED,
    SCORE_NONE,
    SCORE_OFFICIAL,
    SCORE_PROPOSED,
    SCORE_SIGNED,
    SCORE_SUBMITTED,
    Match,
)
from competition_engine.models.team import TEAM_WITHDRAWN, Team
from competition_engine.models.tournament import Tournament
from competition_engine.services.advancement_service import apply_advancement_for_final_match
from competition_engine.services.dupr_service import RatingService, SubmissionResult, get_dupr_service
from competition_engine.services.match_permissions import (
    ACTION_DISPUTE,
    ACTION_EDIT,
    ACTION_FINALIZE,
    ACTION_FORFEIT,
    ACTION_PROPOSE,
    ACTION_SIGN,
    ACTION_SUBMIT,
    ACTION_VOID,
    ACTIONS,
    UNOFFICIAL_STATES,
    MatchActor,
    MatchSnapshot,
    available_actions,
    check_dispute,
    check_edit,
    check_finalize,
    check_forfeit,
    check_propose,
    check_release_claim,
    check_sign,
    check_submit,
    check_void,
    resolve_actor,
)
from competition_engine.services.score_validation import MatchRules, normalize_games, validate_match_scores
from competition_engine.services.standings_service import (
    RANKED_MATCH_TYPES,
    DatabaseStandingsAggregator,
    StandingsAggregator,
)
from competition_engine.utils.side_refs import loser_team_id, team_for_side
from competition_engine.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class MatchContext:
    """Everything the guards need, loaded once per action."""

    match: Match
    division: Division
    tournament: Tournament
    actor: MatchActor
    snapshot: MatchSnapshot


@dataclass
class ActionResult:
    match: Match
    action: str
    previous_state: str
    advanced_count: int = 0
    submission: Optional[SubmissionResult] = None


def _players(session: Session, team_id: Optional[int]) -> Sequence[str]:
    if team_id is None:
        return []
    team = session.get(Team, team_id)
    return team.player_ids if team else []


def is_organizer(session: Session, tournament_id: int, user_id: str) -> bool:
    grant = session.exec(
        select(EventOrganizer).where(EventOrganizer.tournament_id == tournament_id, EventOrganizer.user_id == user_id)
    ).first()
    return grant is not None


def load_match_context(session: Session, match_id: int, user_id: str) -> MatchContext:
    # populate_existing: always read the committed version, never a stale identity-map copy
    match = session.get(Match, match_id, populate_existing=True)
    if not match:
        raise NotFoundError(f"Match {match_id} not found")
    division = session.get(Division, match.division_id)
    tournament = session.get(Tournament, match.tournament_id)
    if not division or not tournament:
        raise NotFoundError(f"Division or tournament of match {match_id} not found")

    actor = resolve_actor(
        user_id,
        _players(session, match.team_a_id),
        _players(session, match.team_b_id),
        is_organizer(session, tournament.id, user_id),
        tournament.dupr_eligible,
    )
    return MatchContext(
        match=match,
        division=division,
        tournament=tournament,
        actor=actor,
        snapshot=MatchSnapshot.from_match(match, tournament.dupr_eligible),
    )


def compare_and_swap(session: Session, match: Match, values: Dict[str, Any]) -> Match:
    """
    Write values only if nobody else transitioned the match since it was read.

    Bumps version by one and commits. Raises MatchConflictError on a lost race.
    """
    expected = match.version
    result = session.connection().execute(
        update(Match)
        .where(Match.id == match.id, Match.version == expected)
        .values(**values, version=expected + 1, updated_at=utc_now())
    )
    if result.rowcount != 1:
        session.rollback()
        raise MatchConflictError(f"Match {match.id} changed since it was read (version {expected}); reload and retry")
    session.commit()
    session.refresh(match)
    return match


def _scored_values(ctx: MatchContext, games: Optional[Sequence[Any]]) -> Dict[str, Any]:
    normalized = normalize_games(games)
    outcome = validate_match_scores(normalized, MatchRules.from_division(ctx.division))
    return {
        "games": normalized,
        "winner_team_id": team_for_side(ctx.match, outcome.winner_side),
    }


def _propose(ctx: MatchContext, games, reason, winner_side) -> Dict[str, Any]:
    check_propose(ctx.actor, ctx.snapshot)
    values = _scored_values(ctx, games)
    values.update(
        score_state=SCORE_PROPOSED,
        proposed_by=ctx.actor.user_id,
        proposed_by_side=ctx.actor.side,
        proposed_at=utc_now(),
        confirmations=[],
    )
    return values


def _sign(ctx: MatchContext, games, reason, winner_side) -> Dict[str, Any]:
    check_sign(ctx.actor, ctx.snapshot)
    confirmation = {"user_id": ctx.actor.user_id, "side": ctx.actor.side, "at": utc_now().isoformat()}
    return {
        "score_state": SCORE_SIGNED,
        "confirmations": list(ctx.match.confirmations or []) + [confirmation],
    }


def _dispute(ctx: MatchContext, games, reason, winner_side) -> Dict[str, Any]:
    check_dispute(ctx.actor, ctx.snapshot, reason)
    return {
        "score_state": SCORE_DISPUTED,
        "dispute_reason": reason.strip(),
        "disputed_by": ctx.actor.user_id,
        "disputed_at": utc_now(),
    }


def _finalize(ctx: MatchContext, games, reason, winner_side) -> Dict[str, Any]:
    check_finalize(ctx.actor, ctx.snapshot)
    if not games:
        # No payload: the recorded proposal becomes official
        games = ctx.match.games
    if not games:
        raise ScoreValidationError("No scores recorded; provide games to finalize")
    values = _scored_values(ctx, games)
    values.update(
        score_state=SCORE_OFFICIAL,
        is_forfeit=False,
        finalized_by=ctx.actor.user_id,
        finalized_at=utc_now(),
    )
    return values


def _edit(ctx: MatchContext, games, reason, winner_side) -> Dict[str, Any]:
    check_edit(ctx.actor, ctx.snapshot)
    if not games:
        raise ScoreValidationError("Edit requires the corrected game scores")
    values = _scored_values(ctx, games)
    values.update(is_forfeit=False, finalized_by=ctx.actor.user_id, finalized_at=utc_now())
    return values


def _forfeit(ctx: MatchContext, games, reason, winner_side) -> Dict[str, Any]:
    check_forfeit(ctx.actor, ctx.snapshot, winner_side)
    return {
        "score_state": SCORE_OFFICIAL,
        "games": None,
        "winner_team_id": team_for_side(ctx.match, winner_side),
        "is_forfeit": True,
        "finalized_by": ctx.actor.user_id,
        "finalized_at": utc_now(),
    }


def _void(ctx: MatchContext, games, reason, winner_side) -> Dict[str, Any]:
    check_void(ctx.actor, ctx.snapshot)
    # Back to an unscored match; the players propose again from scratch
    return {
        "score_state": SCORE_NONE,
        "games": None,
        "winner_team_id": None,
        "is_forfeit": False,
        "proposed_by": None,
        "proposed_by_side": None,
        "proposed_at": None,
        "confirmations": [],
        "dispute_reason": None,
        "disputed_by": None,
        "disputed_at": None,
        "finalized_by": None,
        "finalized_at": None,
    }


TRANSITIONS: Dict[str, Callable[..., Dict[str, Any]]] = {
    ACTION_PROPOSE: _propose,
    ACTION_SIGN: _sign,
    ACTION_DISPUTE: _dispute,
    ACTION_FINALIZE: _finalize,
    ACTION_EDIT: _edit,
    ACTION_FORFEIT: _forfeit,
    ACTION_VOID: _void,
}

# Transitions after which the result is official
OFFICIAL_ACTIONS = (ACTION_FINALIZE, ACTION_EDIT, ACTION_FORFEIT)


def trigger_standings(aggregator: StandingsAggregator, division_id: int) -> None:
    """Fire-and-forget recompute. The match transition is already committed."""
    try:
        aggregator.recompute(division_id)
    except Exception:
        logger.exception("Standings recompute failed for division %s", division_id)


def after_official(
    session: Session,
    match: Match,
    is_league: bool,
    standings: Optional[StandingsAggregator] = None,
    previous_result: Tuple[Optional[int], Optional[int]] = (None, None),
) -> int:
    """Run the downstream effects of a match becoming official. Returns advanced slot count."""
    advanced = 0
    if match.match_type in (MATCH_TYPE_BRACKET, MATCH_TYPE_BRONZE):
        previous_winner, previous_loser = previous_result
        advanced = apply_advancement_for_final_match(session, match.id, previous_winner, previous_loser)
        if advanced:
            logger.info("Match %s advanced %d downstream slot(s)", match.id, advanced)
            forfeit_withdrawn_entrants(session, match.division_id, standings=standings)

    if is_league or match.match_type in RANKED_MATCH_TYPES:
        trigger_standings(standings or DatabaseStandingsAggregator(session.get_bind()), match.division_id)
    return advanced


def record_withdrawal_forfeit(
    session: Session,
    match_id: int,
    withdrawn_team_id: int,
    *,
    standings: Optional[StandingsAggregator] = None,
) -> bool:
    """
    Award an unfinished match to the opponent of a withdrawn team.

    System action, no actor guards. Skips (returns False) matches that are
    already official, submitted, mid-submission, or whose opponent is still
    unknown.
    """
    match = session.get(Match, match_id, populate_existing=True)
    if not match:
        raise NotFoundError(f"Match {match_id} not found")

    if match.score_state not in UNOFFICIAL_STATES or match.dupr_submission_pending:
        return False
    opponent = match.team_b_id if match.team_a_id == withdrawn_team_id else match.team_a_id
    if opponent is None or withdrawn_team_id not in (match.team_a_id, match.team_b_id):
        logger.warning("Match %s: opponent of withdrawn team %s unknown, no forfeit recorded", match.id, withdrawn_team_id)
        return False

    compare_and_swap(
        session,
        match,
        {
            "score_state": SCORE_OFFICIAL,
            "games": None,
            "winner_team_id": opponent,
            "is_forfeit": True,
            "finalized_at": utc_now(),
        },
    )
    logger.info("Match %s forfeited by withdrawn team %s", match.id, withdrawn_team_id)
    tournament = session.get(Tournament, match.tournament_id)
    after_official(session, match, tournament.is_league, standings)
    return True


def forfeit_withdrawn_entrants(
    session: Session, division_id: int, *, standings: Optional[StandingsAggregator] = None
) -> int:
    """
    Forfeit live matches that advancement has paired with a withdrawn team.

    A team that withdraws while holding a bye or waiting on its bronze
    opponent has no match to forfeit yet; this catches it once it is placed.
    """
    withdrawn = set(
        session.exec(select(Team.id).where(Team.division_id == division_id, Team.status == TEAM_WITHDRAWN)).all()
    )
    if not withdrawn:
        return 0

    live = session.exec(
        select(Match)
        .where(
            Match.division_id == division_id,
            Match.score_state.in_(UNOFFICIAL_STATES),
            Match.team_a_id.is_not(None),
            Match.team_b_id.is_not(None),
        )
        .order_by(Match.round_number, Match.bracket_position, Match.id)
    ).all()
    forfeits = 0
    for match in live:
        if match.team_a_id in withdrawn:
            quitter = match.team_a_id
        elif match.team_b_id in withdrawn:
            quitter = match.team_b_id
        else:
            continue
        if record_withdrawal_forfeit(session, match.id, quitter, standings=standings):
            forfeits += 1
    return forfeits


def _submit(session: Session, ctx: MatchContext, rating_service: Optional[RatingService]) -> SubmissionResult:
    check_submit(ctx.actor, ctx.snapshot)
    match = ctx.match

    # Claim the match first: every other transition is rejected while this is set
    compare_and_swap(session, match, {"dupr_submission_pending": True, "dupr_submission_error": None})

    service = rating_service or get_dupr_service()
    teams = [session.get(Team, match.team_a_id), session.get(Team, match.team_b_id)]
    try:
        result = service.submit(match, teams, ctx.tournament)
    except Exception as exc:
        compare_and_swap(session, match, {"dupr_submission_pending": False, "dupr_submission_error": str(exc)})
        raise RatingSubmissionError(f"Rating submission failed for match {match.id}: {exc}") from exc

    if not result.success:
        compare_and_swap(session, match, {"dupr_submission_pending": False, "dupr_submission_error": result.error})
        raise RatingSubmissionError(f"Rating submission failed for match {match.id}: {result.error}")

    compare_and_swap(
        session,
        match,
        {
            "score_state": SCORE_SUBMITTED,
            "dupr_submitted": True,
            "dupr_submission_pending": False,
            "dupr_submission_id": result.submission_id,
            "dupr_submission_error": None,
            "dupr_submitted_at": utc_now(),
        },
    )
    return result


def release_submission_claim(session: Session, match_id: int, user_id: str) -> Match:
    """
    Clear a submission claim whose submit never finished (process crash, lost worker).

    The match stays official and can be submitted again. The rating
    service treats a repeated identifier as already submitted, so releasing a
    claim whose call did reach the service does not double-count the match.
    """
    ctx = load_match_context(session, match_id, user_id)
    check_release_claim(ctx.actor, ctx.snapshot)
    compare_and_swap(
        session,
        ctx.match,
        {"dupr_submission_pending": False, "dupr_submission_error": f"Submission claim released by {user_id}"},
    )
    logger.warning("Match %s: stuck rating submission claim released by %s", match_id, user_id)
    return ctx.match


def apply_match_action(
    session: Session,
    match_id: int,
    user_id: str,
    action: str,
    games: Optional[Sequence[Any]] = None,
    reason: Optional[str] = None,
    winner_side: Optional[str] = None,
    *,
    standings: Optional[StandingsAggregator] = None,
    rating_service: Optional[RatingService] = None,
) -> ActionResult:
    """
    Apply one lifecycle action to a match on behalf of user_id.

    Returns the updated match. Every rejected action raises a
    CompetitionEngineError subclass and leaves the match unchanged.
    """
    if action not in ACTIONS:
        raise ActionValidationError(
            f"Unknown action '{action}'. Expected one of {', '.join(ACTIONS)}", code="UNKNOWN_ACTION"
        )
    if not user_id:
        raise ActionValidationError("user_id is required")

    ctx = load_match_context(session, match_id, user_id)
    match = ctx.match
    previous_state = match.score_state
    previous_result = (match.winner_team_id, loser_team_id(match))

    if action == ACTION_SUBMIT:
        submission = _submit(session, ctx, rating_service)
        logger.info("Match %s %s -> %s by %s", match.id, previous_state, match.score_state, user_id)
        return ActionResult(match=match, action=action, previous_state=previous_state, submission=submission)

    values = TRANSITIONS[action](ctx, games, reason, winner_side)
    compare_and_swap(session, match, values)
    logger.info("Match %s %s -> %s (%s by %s)", match.id, previous_state, match.score_state, action, user_id)

    advanced = 0
    if action in OFFICIAL_ACTIONS:
        advanced = after_official(session, match, ctx.tournament.is_league, standings, previous_result)
    return ActionResult(match=match, action=action, previous_state=previous_state, advanced_count=advanced)


def retry_on_conflict(session: Session, operation: Callable[[], T], retries: Optional[int] = None) -> T:
    """
    Re-run operation after a lost compare-and-swap race.

    Only CONCURRENT_UPDATE is retried; the operation re-reads the match and
    re-runs its guards each attempt, so a transition that no longer applies
    fails with its own error.
    """
    attempts = (retries if retries is not None else config.MATCH_CONFLICT_RETRIES) + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except MatchConflictError as e:
            if e.code != MatchConflictError.code or attempt >= attempts:
                raise
            logger.info("Conflict on attempt %d/%d, retrying: %s", attempt, attempts, e.message)
            session.expire_all()


def get_available_actions(session: Session, match_id: int, user_id: str) -> Tuple[Match, List[str]]:
    ctx = load_match_context(session, match_id, user_id)
    return ctx.match, available_actions(ctx.actor, ctx.snapshot)


def propose_score(session: Session, match_id: int, user_id: str, games: Sequence[Any], **kwargs) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_PROPOSE, games=games, **kwargs)


def sign_score(session: Session, match_id: int, user_id: str, **kwargs) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_SIGN, **kwargs)


def dispute_score(session: Session, match_id: int, user_id: str, reason: str, **kwargs) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_DISPUTE, reason=reason, **kwargs)


def finalize_score(
    session: Session, match_id: int, user_id: str, games: Optional[Sequence[Any]] = None, **kwargs
) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_FINALIZE, games=games, **kwargs)


def edit_score(session: Session, match_id: int, user_id: str, games: Sequence[Any], **kwargs) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_EDIT, games=games, **kwargs)


def submit_to_rating_service(session: Session, match_id: int, user_id: str, **kwargs) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_SUBMIT, **kwargs)


def record_forfeit(session: Session, match_id: int, user_id: str, winner_side: str, **kwargs) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_FORFEIT, winner_side=winner_side, **kwargs)


def void_score(session: Session, match_id: int, user_id: str, **kwargs) -> ActionResult:
    return apply_match_action(session, match_id, user_id, ACTION_VOID, **kwargs)
