from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel

from competition_engine.utils.timestamps import utc_now


class StandingsEntry(SQLModel, table=True):
    """Derived per-team aggregate. Rebuilt by the standings aggregator, never edited directly."""

    __table_args__ = (SAUniqueConstraint("division_id", "stage", "team_id", name="uq_standings_stage_team"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    stage: str  # "Pool A" | "Round Robin" | "Overall"
    team_id: int = Field(foreign_key="team.id")
    rank: int
    played: int = Field(default=0)
    wins: int = Field(default=0)
    losses: int = Field(default=0)
    draws: int = Field(default=0)
    points_for: int = Field(default=0)
    points_against: int = Field(default=0)
    point_differential: int = Field(default=0)
    ranking_points: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utc_now)
