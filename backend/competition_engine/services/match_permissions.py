"""
Match score permissions.

Roles are computed once per match load into a closed set of tags; every guard
below is a pure function over (actor, snapshot) that raises the named error
for the first rule it violates.

Guard order for every mutating action:
  1. submitted to the rating service -> ImmutableMatchError (never retriable)
  2. submission in flight             -> MatchConflictError
  3. actor role                       -> MatchPermissionError
  4. lifecycle state                  -> InvalidTransitionError
  5. payload                          -> ActionValidationError
"""

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence

from competition_engine.errors import (
    ActionValidationError,
    CompetitionEngineError,
    ImmutableMatchError,
    InvalidTransitionError,
    MatchConflictError,
    MatchPermissionError,
)
from competition_engine.models.match import (
    SCORE_DISPUTED,
    SCORE_NONE,
    SCORE_OFFICIAL,
    SCORE_PROPOSED,
    SCORE_SIGNED,
    SCORE_SUBMITTED,
    SIDE_A,
    SIDE_B,
    Match,
)
from competition_engine.utils.side_refs import sides_resolved

ROLE_PARTICIPANT = "participant"
ROLE_ORGANIZER = "organizer"
ROLE_EFFECTIVE_ORGANIZER = "effective_organizer"
ROLE_ORGANIZER_PARTICIPANT = "organizer_participant"

ACTION_PROPOSE = "propose"
ACTION_SIGN = "sign"
ACTION_DISPUTE = "dispute"
ACTION_FINALIZE = "finalize"
ACTION_EDIT = "edit"
ACTION_SUBMIT = "submit"
ACTION_FORFEIT = "forfeit"
ACTION_VOID = "void"

ACTIONS = (
    ACTION_PROPOSE,
    ACTION_SIGN,
    ACTION_DISPUTE,
    ACTION_FINALIZE,
    ACTION_EDIT,
    ACTION_SUBMIT,
    ACTION_FORFEIT,
    ACTION_VOID,
)

# States from which an organizer may declare the official result directly
UNOFFICIAL_STATES = (SCORE_NONE, SCORE_PROPOSED, SCORE_SIGNED, SCORE_DISPUTED)


@dataclass(frozen=True)
class MatchActor:
    user_id: str
    side: Optional[str]  # "A" | "B" | None when not playing
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_participant(self) -> bool:
        return ROLE_PARTICIPANT in self.roles

    @property
    def is_effective_organizer(self) -> bool:
        return ROLE_EFFECTIVE_ORGANIZER in self.roles

    @property
    def is_organizer_participant(self) -> bool:
        return ROLE_ORGANIZER_PARTICIPANT in self.roles


@dataclass(frozen=True)
class MatchSnapshot:
    """The parts of a match the guards look at."""

    state: str
    sides_resolved: bool
    dupr_eligible: bool = False
    proposed_by: Optional[str] = None
    proposed_by_side: Optional[str] = None
    confirmed_by: FrozenSet[str] = field(default_factory=frozenset)
    dupr_submitted: bool = False
    submission_pending: bool = False
    is_forfeit: bool = False

    @classmethod
    def from_match(cls, match: Match, dupr_eligible: bool) -> "MatchSnapshot":
        return cls(
            state=match.score_state,
            sides_resolved=sides_resolved(match),
            dupr_eligible=dupr_eligible,
            proposed_by=match.proposed_by,
            proposed_by_side=match.proposed_by_side,
            confirmed_by=frozenset(c.get("user_id") for c in (match.confirmations or [])),
            dupr_submitted=match.dupr_submitted,
            submission_pending=match.dupr_submission_pending,
            is_forfeit=match.is_forfeit,
        )


def resolve_actor(
    user_id: str,
    side_a_players: Sequence[str],
    side_b_players: Sequence[str],
    is_organizer: bool,
    dupr_eligible: bool,
) -> MatchActor:
    side: Optional[str] = None
    if user_id in side_a_players:
        side = SIDE_A
    elif user_id in side_b_players:
        side = SIDE_B

    roles = set()
    if side is not None:
        roles.add(ROLE_PARTICIPANT)
    if is_organizer:
        roles.add(ROLE_ORGANIZER)
        if dupr_eligible and side is not None:
            roles.add(ROLE_ORGANIZER_PARTICIPANT)
        else:
            roles.add(ROLE_EFFECTIVE_ORGANIZER)
    return MatchActor(user_id=user_id, side=side, roles=frozenset(roles))


def _check_mutable(snap: MatchSnapshot) -> None:
    if snap.dupr_submitted or snap.state == SCORE_SUBMITTED:
        raise ImmutableMatchError("Match has been submitted for rating and can no longer change")
    if snap.submission_pending:
        raise MatchConflictError("Rating submission in progress", code="SUBMISSION_IN_FLIGHT")


def _require_participant(actor: MatchActor) -> None:
    if not actor.is_participant:
        raise MatchPermissionError("Only match participants can do this", code="NOT_A_PARTICIPANT")


def _require_effective_organizer(actor: MatchActor) -> None:
    if actor.is_effective_organizer:
        return
    if actor.is_organizer_participant:
        raise MatchPermissionError(
            "Organizers playing in a DUPR-eligible match cannot act as organizer on it",
            code="ORGANIZER_PARTICIPANT",
        )
    raise MatchPermissionError("Only organizers can do this", code="NOT_ORGANIZER")


def _require_sides_resolved(snap: MatchSnapshot) -> None:
    if not snap.sides_resolved:
        raise InvalidTransitionError("Both sides must be known before scoring", code="SIDES_UNRESOLVED")


def check_propose(actor: MatchActor, snap: MatchSnapshot) -> None:
    _check_mutable(snap)
    if actor.is_organizer_participant:
        raise MatchPermissionError(
            "Organizers playing in a DUPR-eligible match cannot propose its score",
            code="ORGANIZER_PARTICIPANT",
        )
    if not (actor.is_participant or actor.is_effective_organizer):
        raise MatchPermissionError("Only match participants or organizers can propose scores", code="NOT_A_PARTICIPANT")
    if snap.state != SCORE_NONE:
        raise InvalidTransitionError(f"Cannot propose a score when match is {snap.state}")
    _require_sides_resolved(snap)


def check_sign(actor: MatchActor, snap: MatchSnapshot) -> None:
    _check_mutable(snap)
    _require_participant(actor)
    if snap.state == SCORE_NONE:
        raise InvalidTransitionError("No score proposal to sign", code="OPPONENT_MUST_PROPOSE_FIRST")
    if actor.user_id in snap.confirmed_by:
        raise InvalidTransitionError("You have already confirmed this score", code="ALREADY_CONFIRMED")
    if snap.state != SCORE_PROPOSED:
        raise InvalidTransitionError(f"Cannot sign a score when match is {snap.state}")
    if snap.proposed_by == actor.user_id or (
        snap.proposed_by_side is not None and snap.proposed_by_side == actor.side
    ):
        raise MatchPermissionError("Signer must be on the opposing side", code="OWN_SIDE_CONFIRMATION")


def check_dispute(actor: MatchActor, snap: MatchSnapshot, reason: Optional[str]) -> None:
    _check_mutable(snap)
    _require_participant(actor)
    if snap.state not in (SCORE_PROPOSED, SCORE_SIGNED):
        raise InvalidTransitionError(f"Cannot dispute a score when match is {snap.state}")
    if not reason or not reason.strip():
        raise ActionValidationError("A dispute needs a reason", code="REASON_REQUIRED")


def check_finalize(actor: MatchActor, snap: MatchSnapshot) -> None:
    _check_mutable(snap)
    _require_effective_organizer(actor)
    if snap.state not in UNOFFICIAL_STATES:
        raise InvalidTransitionError(f"Cannot finalize when match is {snap.state}; use edit")
    _require_sides_resolved(snap)


def check_edit(actor: MatchActor, snap: MatchSnapshot) -> None:
    _check_mutable(snap)
    _require_effective_organizer(actor)
    if snap.state != SCORE_OFFICIAL:
        raise InvalidTransitionError(f"Only official results can be edited, match is {snap.state}")


def check_submit(actor: MatchActor, snap: MatchSnapshot) -> None:
    _check_mutable(snap)
    _require_effective_organizer(actor)
    if not snap.dupr_eligible:
        raise InvalidTransitionError("Event is not DUPR-eligible", code="NOT_DUPR_ELIGIBLE")
    if snap.state != SCORE_OFFICIAL:
        raise InvalidTransitionError(f"Only official results can be submitted, match is {snap.state}")
    if snap.is_forfeit:
        raise InvalidTransitionError("Forfeits cannot be submitted for rating", code="FORFEIT_NOT_SUBMITTABLE")


def check_forfeit(actor: MatchActor, snap: MatchSnapshot, winner_side: Optional[str]) -> None:
    _check_mutable(snap)
    _require_effective_organizer(actor)
    if snap.state not in UNOFFICIAL_STATES:
        raise InvalidTransitionError(f"Cannot record a forfeit when match is {snap.state}")
    _require_sides_resolved(snap)
    if winner_side not in (SIDE_A, SIDE_B):
        raise ActionValidationError("winner_side must be 'A' or 'B'", code="INVALID_WINNER_SIDE")


def check_void(actor: MatchActor, snap: MatchSnapshot) -> None:
    """Organizer throws out a disputed score so the players can start over."""
    _check_mutable(snap)
    _require_effective_organizer(actor)
    if snap.state != SCORE_DISPUTED:
        raise InvalidTransitionError(f"Only disputed scores can be voided, match is {snap.state}")


def check_release_claim(actor: MatchActor, snap: MatchSnapshot) -> None:
    """Organizer clears a submission claim left behind by a crashed submit."""
    if snap.dupr_submitted or snap.state == SCORE_SUBMITTED:
        raise ImmutableMatchError("Match has been submitted for rating and can no longer change")
    _require_effective_organizer(actor)
    if not snap.submission_pending:
        raise InvalidTransitionError("No rating submission is in progress", code="NO_SUBMISSION_IN_FLIGHT")


def available_actions(actor: MatchActor, snap: MatchSnapshot) -> List[str]:
    """Actions this actor could attempt right now (payload validity aside)."""
    checks = {
        ACTION_PROPOSE: lambda: check_propose(actor, snap),
        ACTION_SIGN: lambda: check_sign(actor, snap),
        ACTION_DISPUTE: lambda: check_dispute(actor, snap, "-"),
        ACTION_FINALIZE: lambda: check_finalize(actor, snap),
        ACTION_EDIT: lambda: check_edit(actor, snap),
        ACTION_SUBMIT: lambda: check_submit(actor, snap),
        ACTION_FORFEIT: lambda: check_forfeit(actor, snap, SIDE_A),
        ACTION_VOID: lambda: check_void(actor, snap),
    }
    allowed: List[str] = []
    for action in ACTIONS:
        try:
            checks[action]()
        except CompetitionEngineError:
            continue
        allowed.append(action)
    return allowed
