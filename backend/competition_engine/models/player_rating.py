from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from competition_engine.utils.timestamps import utc_now


class PlayerRating(SQLModel, table=True):
    player_id: str = Field(primary_key=True)
    singles_rating: Optional[float] = Field(default=None)
    doubles_rating: Optional[float] = Field(default=None)
    updated_at: datetime = Field(default_factory=utc_now)
