"""
Team registration: register, partner join/leave, withdraw.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from competition_engine.database import get_session
from competition_engine.errors import CompetitionEngineError
from competition_engine.models.division import Division
from competition_engine.models.team import Team
from competition_engine.services.team_service import join_team, leave_team, register_team, withdraw_team
from competition_engine.utils.http_errors import to_http_exception

router = APIRouter()


class TeamCreate(BaseModel):
    player_ids: List[str] = Field(min_length=1)
    captain_id: Optional[str] = None
    name: Optional[str] = None
    seeking_partner: bool = False


class PlayerAction(BaseModel):
    player_id: str = Field(min_length=1)


class TeamRead(BaseModel):
    id: int
    division_id: int
    name: Optional[str] = None
    player_ids: List[str]
    captain_id: str
    status: str
    seeking_partner: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.get("/divisions/{division_id}/teams", response_model=List[TeamRead])
def list_teams(division_id: int, session: Session = Depends(get_session)):
    if not session.get(Division, division_id):
        raise HTTPException(status_code=404, detail="NOT_FOUND: Division not found")
    return session.exec(select(Team).where(Team.division_id == division_id).order_by(Team.id)).all()


@router.post("/divisions/{division_id}/teams", response_model=TeamRead, status_code=201)
def create_team(division_id: int, payload: TeamCreate, session: Session = Depends(get_session)):
    try:
        return register_team(
            session,
            division_id,
            payload.player_ids,
            captain_id=payload.captain_id,
            name=payload.name,
            seeking_partner=payload.seeking_partner,
        )
    except CompetitionEngineError as e:
        raise to_http_exception(e)


@router.post("/teams/{team_id}/join", response_model=TeamRead)
def join(team_id: int, payload: PlayerAction, session: Session = Depends(get_session)):
    try:
        return join_team(session, team_id, payload.player_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)


@router.post("/teams/{team_id}/leave", response_model=TeamRead)
def leave(team_id: int, payload: PlayerAction, session: Session = Depends(get_session)):
    try:
        return leave_team(session, team_id, payload.player_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)


@router.post("/teams/{team_id}/withdraw", response_model=TeamRead)
def withdraw(team_id: int, session: Session = Depends(get_session)):
    """Withdraw the team; its unfinished matches are forfeited to the opponents."""
    try:
        return withdraw_team(session, team_id)
    except CompetitionEngineError as e:
        raise to_http_exception(e)
