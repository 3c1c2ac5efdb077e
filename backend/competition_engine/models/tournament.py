from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

from competition_engine.utils.timestamps import utc_now

if TYPE_CHECKING:
    from competition_engine.models.division import Division
    from competition_engine.models.event_organizer import EventOrganizer


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    # League events recompute standings whenever a match result changes
    is_league: bool = Field(default=False)
    # DUPR-eligible events enforce non-self-reporting and allow rating submission
    dupr_eligible: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    divisions: List["Division"] = Relationship(back_populates="tournament")
    organizers: List["EventOrganizer"] = Relationship(back_populates="tournament")
