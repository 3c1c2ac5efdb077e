from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

from competition_engine.utils.timestamps import utc_now

if TYPE_CHECKING:
    from competition_engine.models.match import Match
    from competition_engine.models.team import Team
    from competition_engine.models.tournament import Tournament

STAGE_MODE_SINGLE = "single_stage"
STAGE_MODE_TWO = "two_stage"

FORMAT_ROUND_ROBIN = "round_robin"
FORMAT_SINGLE_ELIMINATION = "single_elimination"
FORMAT_LADDER = "ladder"

SCHEDULE_NOT_SCHEDULED = "not_scheduled"
SCHEDULE_SCHEDULED = "scheduled"

DEFAULT_TIE_BREAKERS = ["wins", "head_to_head", "point_differential"]


class Division(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    play_type: str = Field(default="doubles")  # "singles" | "doubles"

    # Format (immutable once matches exist)
    stage_mode: str = Field(default=STAGE_MODE_SINGLE)
    main_format: str = Field(default=FORMAT_SINGLE_ELIMINATION)
    secondary_format: Optional[str] = Field(default=None)  # two-stage: format of the post-pool bracket
    number_of_pools: int = Field(default=2)
    teams_per_pool: int = Field(default=4)
    advance_to_main: int = Field(default=2)
    advance_to_consolation: int = Field(default=0)
    seeding_method: str = Field(default="rating")  # "rating" | "random" | "manual"
    tie_breakers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TIE_BREAKERS), sa_column=Column(JSON, nullable=False)
    )

    # Match rules
    best_of: int = Field(default=1)
    points_per_game: int = Field(default=11)
    win_by: int = Field(default=2)
    cap_at: Optional[int] = Field(default=None)
    bronze_match: bool = Field(default=False)

    schedule_status: str = Field(default=SCHEDULE_NOT_SCHEDULED)  # "not_scheduled" | "scheduled"
    # Per stage label: {"size": 8, "rounds": 3, "slots": [team_id | None, ...], "bronze": bool}
    bracket_layouts: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="divisions")
    teams: List["Team"] = Relationship(back_populates="division")
    matches: List["Match"] = Relationship(back_populates="division")
