"""
Division match generation, match listing and standings.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from competition_engine.database import get_session
from competition_engine.errors import CompetitionEngineError
from competition_engine.models.division import Division
from competition_engine.models.match import Match
from competition_engine.services.generation_service import (
    GenerationResult,
    generate_bracket_from_pools,
    generate_division_matches,
)
from competition_engine.services.standings_service import division_standings
from competition_engine.utils.http_errors import to_http_exception

router = APIRouter()


class MatchState(BaseModel):
    id: int
    division_id: int
    stage: str
    match_type: str
    round_number: int
    bracket_position: int
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    placeholder_side_a: str
    placeholder_side_b: str
    source_match_a_id: Optional[int] = None
    source_match_b_id: Optional[int] = None
    score_state: str
    games: Optional[List[Dict[str, int]]] = None
    winner_team_id: Optional[int] = None
    is_forfeit: bool = False
    proposed_by: Optional[str] = None
    proposed_by_side: Optional[str] = None
    dispute_reason: Optional[str] = None
    dupr_submitted: bool = False
    dupr_submission_pending: bool = False
    dupr_submission_error: Optional[str] = None
    version: int

    class Config:
        from_attributes = True


class GenerationResponse(BaseModel):
    division_id: int
    stages: List[str]
    match_count: int
    byes: int
    matches: List[MatchState]


class StandingRowOut(BaseModel):
    team_id: int
    rank: int
    played: int
    wins: int
    losses: int
    draws: int
    points_for: int
    points_against: int
    point_differential: int
    ranking_points: int


def match_to_state(m: Match) -> MatchState:
    return MatchState.model_validate(m)


def _generation_response(result: GenerationResult) -> GenerationResponse:
    return GenerationResponse(
        division_id=result.division_id,
        stages=result.stages,
        match_count=len(result.matches),
        byes=result.byes,
        matches=[match_to_state(m) for m in result.matches],
    )


@router.post("/divisions/{division_id}/generate", response_model=GenerationResponse)
def generate_matches(division_id: int, session: Session = Depends(get_session)) -> GenerationResponse:
    """Seed the division's active teams and create its first-stage matches."""
    try:
        result = generate_division_matches(session, division_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
    return _generation_response(result)


@router.post("/divisions/{division_id}/generate-bracket-from-pools", response_model=GenerationResponse)
def generate_bracket(division_id: int, session: Session = Depends(get_session)) -> GenerationResponse:
    """Two-stage divisions: build the main/consolation brackets from final pool standings."""
    try:
        result = generate_bracket_from_pools(session, division_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
    return _generation_response(result)


@router.get("/divisions/{division_id}/matches", response_model=List[MatchState])
def list_division_matches(
    division_id: int,
    stage: Optional[str] = None,
    session: Session = Depends(get_session),
) -> List[MatchState]:
    if not session.get(Division, division_id):
        raise HTTPException(status_code=404, detail="NOT_FOUND: Division not found")
    query = select(Match).where(Match.division_id == division_id)
    if stage:
        query = query.where(Match.stage == stage)
    matches = session.exec(query.order_by(Match.stage, Match.round_number, Match.bracket_position)).all()
    return [match_to_state(m) for m in matches]


@router.get("/divisions/{division_id}/standings", response_model=Dict[str, List[StandingRowOut]])
def get_division_standings(division_id: int, session: Session = Depends(get_session)) -> Dict[str, Any]:
    """Live standings per pool / round-robin stage."""
    try:
        standings = division_standings(session, division_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
    return {stage: [row.to_dict() for row in rows] for stage, rows in standings.items()}
