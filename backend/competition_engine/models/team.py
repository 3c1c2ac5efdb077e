from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

from competition_engine.utils.timestamps import utc_now

if TYPE_CHECKING:
    from competition_engine.models.division import Division

TEAM_ACTIVE = "active"
TEAM_AWAITING_PARTNER = "awaiting_partner"
TEAM_WITHDRAWN = "withdrawn"


class Team(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    name: Optional[str] = Field(default=None)
    # One (singles) or two (doubles) player identifiers, unique within the division
    player_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    captain_id: str
    status: str = Field(default=TEAM_ACTIVE)  # active | awaiting_partner | withdrawn
    seeking_partner: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    division: "Division" = Relationship(back_populates="teams")

    @property
    def display_name(self) -> str:
        return self.name or " / ".join(self.player_ids) or f"Team {self.id}"
