"""
Match score lifecycle: propose, sign, dispute, finalize, edit, forfeit, void, submit.
Every action is one POST; the engine enforces roles, states and concurrency.
"""
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from competition_engine.database import get_session
from competition_engine.errors import CompetitionEngineError
from competition_engine.routes.generation import MatchState, match_to_state
from competition_engine.services.match_lifecycle import (
    apply_match_action,
    get_available_actions,
    release_submission_claim,
)
from competition_engine.services.rating_submissions import (
    BulkSubmissionResult,
    retry_failed_submissions,
    submit_event_matches,
)
from competition_engine.utils.http_errors import to_http_exception

router = APIRouter()


class GameScore(BaseModel):
    a: int
    b: int


class MatchActionRequest(BaseModel):
    user_id: str = Field(min_length=1)
    action: Literal["propose", "sign", "dispute", "finalize", "edit", "submit", "forfeit", "void"]
    games: Optional[List[GameScore]] = None
    reason: Optional[str] = None
    winner_side: Optional[Literal["A", "B"]] = None


class MatchActionResponse(BaseModel):
    match: MatchState
    previous_state: str
    advanced_count: int = 0
    submission_id: Optional[str] = None


class MatchView(BaseModel):
    match: MatchState
    available_actions: List[str]


class OrganizerRequest(BaseModel):
    user_id: str = Field(min_length=1)


class EventSubmissionRequest(BaseModel):
    user_id: str = Field(min_length=1)
    match_ids: Optional[List[int]] = None


class EventSubmissionResponse(BaseModel):
    submitted: List[int]
    failed: Dict[int, str]
    skipped: Dict[int, str]


def _submission_response(result: BulkSubmissionResult) -> EventSubmissionResponse:
    return EventSubmissionResponse(submitted=result.submitted, failed=result.failed, skipped=result.skipped)


@router.post("/matches/{match_id}/actions", response_model=MatchActionResponse)
def post_match_action(
    match_id: int,
    payload: MatchActionRequest,
    session: Session = Depends(get_session),
) -> MatchActionResponse:
    games = [g.model_dump() for g in payload.games] if payload.games is not None else None
    try:
        result = apply_match_action(
            session,
            match_id,
            payload.user_id,
            payload.action,
            games=games,
            reason=payload.reason,
            winner_side=payload.winner_side,
        )
    except CompetitionEngineError as e:
        raise to_http_exception(e)

    return MatchActionResponse(
        match=match_to_state(result.match),
        previous_state=result.previous_state,
        advanced_count=result.advanced_count,
        submission_id=result.submission.submission_id if result.submission else None,
    )


@router.get("/matches/{match_id}", response_model=MatchView)
def get_match(
    match_id: int,
    user_id: str = Query(..., min_length=1),
    session: Session = Depends(get_session),
) -> MatchView:
    """Match state plus the actions this user may take on it now."""
    try:
        match, actions = get_available_actions(session, match_id, user_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
    return MatchView(match=match_to_state(match), available_actions=actions)


@router.post("/matches/{match_id}/release-submission", response_model=MatchState)
def post_release_submission(
    match_id: int,
    payload: OrganizerRequest,
    session: Session = Depends(get_session),
) -> MatchState:
    """Clear a rating submission claim left by a submit that never finished."""
    try:
        match = release_submission_claim(session, match_id, payload.user_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
    return match_to_state(match)


@router.post("/tournaments/{tournament_id}/dupr-submissions", response_model=EventSubmissionResponse)
def post_event_submissions(
    tournament_id: int,
    payload: EventSubmissionRequest,
    session: Session = Depends(get_session),
) -> EventSubmissionResponse:
    try:
        result = submit_event_matches(session, tournament_id, payload.user_id, payload.match_ids)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
    return _submission_response(result)


@router.post("/tournaments/{tournament_id}/dupr-submissions/retry", response_model=EventSubmissionResponse)
def post_retry_event_submissions(
    tournament_id: int,
    payload: OrganizerRequest,
    session: Session = Depends(get_session),
) -> EventSubmissionResponse:
    try:
        result = retry_failed_submissions(session, tournament_id, payload.user_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
    return _submission_response(result)
