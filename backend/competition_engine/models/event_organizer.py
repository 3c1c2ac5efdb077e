from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from competition_engine.utils.timestamps import utc_now

if TYPE_CHECKING:
    from competition_engine.models.tournament import Tournament


class EventOrganizer(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "user_id", name="uq_tournament_organizer"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    user_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=utc_now)

    tournament: "Tournament" = Relationship(back_populates="organizers")
