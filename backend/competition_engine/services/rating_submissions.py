"""
Event-wide rating submission.

Submits every official, rateable match of a tournament in one call, one match
at a time through the normal submit transition. A failure on one match is
recorded on that match and never stops the batch; retry_failed_submissions
picks those up again later.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlmodel import Session, select

from competition_engine.errors import (
    CompetitionEngineError,
    InvalidTransitionError,
    MatchPermissionError,
    NotFoundError,
    RatingSubmissionError,
)
from competition_engine.models.match import SCORE_OFFICIAL, Match
from competition_engine.models.tournament import Tournament
from competition_engine.services.dupr_service import RatingService
from competition_engine.services.match_lifecycle import is_organizer, submit_to_rating_service

logger = logging.getLogger(__name__)


@dataclass
class BulkSubmissionResult:
    submitted: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    skipped: Dict[int, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.submitted)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


def _load_event(session: Session, tournament_id: int, user_id: str) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError(f"Tournament {tournament_id} not found")
    if not is_organizer(session, tournament_id, user_id):
        raise MatchPermissionError("Only organizers can submit results for rating", code="NOT_ORGANIZER")
    if not tournament.dupr_eligible:
        raise InvalidTransitionError("Event is not DUPR-eligible", code="NOT_DUPR_ELIGIBLE")
    return tournament


def _submittable(session: Session, tournament_id: int, failed_only: bool) -> List[int]:
    query = select(Match.id).where(
        Match.tournament_id == tournament_id,
        Match.score_state == SCORE_OFFICIAL,
        Match.is_forfeit == False,
        Match.dupr_submitted == False,
        Match.dupr_submission_pending == False,
    )
    if failed_only:
        query = query.where(Match.dupr_submission_error.is_not(None))
    return list(session.exec(query.order_by(Match.id)).all())


def _submit_each(
    session: Session, match_ids: Sequence[int], user_id: str, rating_service: Optional[RatingService]
) -> BulkSubmissionResult:
    result = BulkSubmissionResult()
    for match_id in match_ids:
        try:
            submit_to_rating_service(session, match_id, user_id, rating_service=rating_service)
        except RatingSubmissionError as e:
            result.failed[match_id] = e.message
            continue
        except CompetitionEngineError as e:
            # Organizer playing in this match, or a lost race
            result.skipped[match_id] = str(e)
            continue
        result.submitted.append(match_id)
    return result


def submit_event_matches(
    session: Session,
    tournament_id: int,
    user_id: str,
    match_ids: Optional[Sequence[int]] = None,
    *,
    rating_service: Optional[RatingService] = None,
) -> BulkSubmissionResult:
    """
    Submit official results of a tournament for rating.

    With match_ids, only those matches are attempted (matches of another
    tournament are skipped); otherwise every official, non-forfeit match not
    yet submitted is.
    """
    _load_event(session, tournament_id, user_id)
    eligible = _submittable(session, tournament_id, failed_only=False)
    if match_ids is None:
        targets = eligible
        skipped: Dict[int, str] = {}
    else:
        targets = [m for m in match_ids if m in eligible]
        skipped = {m: "Not an unsubmitted official result of this event" for m in match_ids if m not in eligible}

    result = _submit_each(session, targets, user_id, rating_service)
    result.skipped.update(skipped)
    logger.info(
        "Tournament %s rating submission: %d submitted, %d failed, %d skipped",
        tournament_id,
        result.success_count,
        result.failure_count,
        len(result.skipped),
    )
    return result


def retry_failed_submissions(
    session: Session, tournament_id: int, user_id: str, *, rating_service: Optional[RatingService] = None
) -> BulkSubmissionResult:
    """Re-submit matches whose last submission attempt failed."""
    _load_event(session, tournament_id, user_id)
    targets = _submittable(session, tournament_id, failed_only=True)
    result = _submit_each(session, targets, user_id, rating_service)
    logger.info(
        "Tournament %s rating retry: %d submitted, %d still failing",
        tournament_id,
        result.success_count,
        result.failure_count,
    )
    return result
