from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from competition_engine.utils.timestamps import utc_now

if TYPE_CHECKING:
    from competition_engine.models.division import Division

# Lifecycle states
SCORE_NONE = "none"
SCORE_PROPOSED = "proposed"
SCORE_SIGNED = "signed"
SCORE_DISPUTED = "disputed"
SCORE_OFFICIAL = "official"
SCORE_SUBMITTED = "submittedToDupr"

MATCH_TYPE_POOL = "POOL"
MATCH_TYPE_ROUND_ROBIN = "ROUND_ROBIN"
MATCH_TYPE_BRACKET = "BRACKET"
MATCH_TYPE_BRONZE = "BRONZE"

ROLE_WINNER = "WINNER"
ROLE_LOSER = "LOSER"

SIDE_A = "A"
SIDE_B = "B"


class Match(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("division_id", "stage", "round_number", "bracket_position", name="uq_match_stage_slot"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    stage: str  # "Pool A" | "Round Robin" | "Main Bracket" | "Consolation Bracket" | "Bronze Match"
    match_type: str  # "POOL" | "ROUND_ROBIN" | "BRACKET" | "BRONZE"
    round_number: int
    bracket_position: int  # 1-based position within the round (play order for pools)

    # Sides (nullable until resolved from an earlier round)
    team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")
    placeholder_side_a: str
    placeholder_side_b: str

    # Upstream match -> side slot, resolved by bracket advancement
    source_match_a_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_match_b_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_a_role: Optional[str] = Field(default=None)  # "WINNER" | "LOSER"
    source_b_role: Optional[str] = Field(default=None)

    # Score lifecycle
    score_state: str = Field(default=SCORE_NONE)
    games: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    winner_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    is_forfeit: bool = Field(default=False)

    proposed_by: Optional[str] = Field(default=None)
    proposed_by_side: Optional[str] = Field(default=None)  # "A" | "B" | None (organizer proposal)
    proposed_at: Optional[datetime] = Field(default=None)
    confirmations: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    dispute_reason: Optional[str] = Field(default=None)
    disputed_by: Optional[str] = Field(default=None)
    disputed_at: Optional[datetime] = Field(default=None)
    finalized_by: Optional[str] = Field(default=None)
    finalized_at: Optional[datetime] = Field(default=None)

    # DUPR submission
    dupr_submitted: bool = Field(default=False)
    dupr_submission_pending: bool = Field(default=False)
    dupr_submission_id: Optional[str] = Field(default=None)
    dupr_submission_error: Optional[str] = Field(default=None)
    dupr_submitted_at: Optional[datetime] = Field(default=None)

    # Optimistic concurrency: every transition is UPDATE ... WHERE version = <read version>
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    division: "Division" = Relationship(back_populates="matches")
