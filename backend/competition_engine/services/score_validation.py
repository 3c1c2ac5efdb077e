"""
Score validation for every scored action (propose, finalize, edit).

A game is {"a": int, "b": int}. A game is complete when the leader has reached
points_per_game with a lead >= win_by, or has reached cap_at (where a lead of
one is enough). A recorded score that would have ended the game a point
earlier is an overshoot and is rejected.

A match is complete when one side has won best_of // 2 + 1 games. Nothing may
follow the deciding game.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from competition_engine.errors import ScoreValidationError
from competition_engine.models.match import SIDE_A, SIDE_B

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchRules:
    best_of: int = 1
    points_per_game: int = 11
    win_by: int = 2
    cap_at: Optional[int] = None

    @property
    def games_to_win(self) -> int:
        return self.best_of // 2 + 1

    @classmethod
    def from_division(cls, division) -> "MatchRules":
        return cls(
            best_of=division.best_of,
            points_per_game=division.points_per_game,
            win_by=division.win_by,
            cap_at=division.cap_at,
        )


@dataclass(frozen=True)
class MatchOutcome:
    winner_side: Optional[str]  # "A" | "B" | None while undecided
    games_a: int
    games_b: int
    points_a: int
    points_b: int

    @property
    def is_complete(self) -> bool:
        return self.winner_side is not None


def _score_value(raw: Any, game_index: int, tally: Tuple[int, int]) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ScoreValidationError("Scores must be whole numbers", game_index, tally)
    if raw < 0:
        raise ScoreValidationError("Scores cannot be negative", game_index, tally)
    return raw


def normalize_games(games: Optional[Sequence[Any]]) -> List[Dict[str, int]]:
    """
    Accept [{"a": 11, "b": 7}, ...] or [(11, 7), ...] and return the dict form.

    Raises ScoreValidationError for anything that is not a pair of non-negative ints.
    """
    if not games:
        raise ScoreValidationError("At least one game score is required")

    normalized: List[Dict[str, int]] = []
    for i, game in enumerate(games, start=1):
        if isinstance(game, dict):
            if "a" not in game or "b" not in game:
                raise ScoreValidationError("Game must have 'a' and 'b' scores", i)
            raw_a, raw_b = game["a"], game["b"]
        elif isinstance(game, (list, tuple)) and len(game) == 2:
            raw_a, raw_b = game
        else:
            raise ScoreValidationError("Game must be a pair of scores", i)
        normalized.append({"a": _score_value(raw_a, i, (0, 0)), "b": _score_value(raw_b, i, (0, 0))})
    return normalized


def _is_terminal(high: int, low: int, rules: MatchRules) -> bool:
    lead = high - low
    if rules.cap_at is not None and high >= rules.cap_at and lead >= 1:
        return True
    return high >= rules.points_per_game and lead >= rules.win_by


def validate_game(score_a: int, score_b: int, rules: MatchRules) -> Optional[str]:
    """Validate one game. Returns an error message, or None when the game is a valid final score."""
    if score_a < 0 or score_b < 0:
        return "Scores cannot be negative"
    if score_a == score_b:
        return "Game cannot end in a tie"

    high, low = max(score_a, score_b), min(score_a, score_b)

    if rules.cap_at is not None and high > rules.cap_at:
        return f"Score {high}-{low} exceeds cap of {rules.cap_at}"

    if not _is_terminal(high, low, rules):
        if high < rules.points_per_game:
            return f"Winner must reach at least {rules.points_per_game} points"
        return f"Score {high}-{low} invalid, must win by {rules.win_by}"

    if _is_terminal(high - 1, low, rules):
        return f"Score {high}-{low} invalid, game should have ended at {high - 1}-{low}"

    return None


def game_winner(game: Dict[str, int]) -> str:
    return SIDE_A if game["a"] > game["b"] else SIDE_B


def compute_match_outcome(games: Sequence[Dict[str, int]], rules: MatchRules) -> MatchOutcome:
    """Tally games and points. Does not validate; see validate_match_scores."""
    games_a = sum(1 for g in games if g["a"] > g["b"])
    games_b = sum(1 for g in games if g["b"] > g["a"])
    winner: Optional[str] = None
    if games_a >= rules.games_to_win:
        winner = SIDE_A
    elif games_b >= rules.games_to_win:
        winner = SIDE_B
    return MatchOutcome(
        winner_side=winner,
        games_a=games_a,
        games_b=games_b,
        points_a=sum(g["a"] for g in games),
        points_b=sum(g["b"] for g in games),
    )


def validate_match_scores(games: Optional[Sequence[Any]], rules: MatchRules) -> MatchOutcome:
    """
    Validate a full score sheet and return its outcome.

    Raises ScoreValidationError naming the 1-based game index and the game
    tally at that point.
    """
    normalized = normalize_games(games)

    if len(normalized) > rules.best_of:
        raise ScoreValidationError(
            f"Too many games, best of {rules.best_of} allows at most {rules.best_of}",
            rules.best_of + 1,
            (0, 0),
        )

    won_a = 0
    won_b = 0
    for i, game in enumerate(normalized, start=1):
        if won_a >= rules.games_to_win or won_b >= rules.games_to_win:
            raise ScoreValidationError(f"Match was already decided after game {i - 1}", i, (won_a, won_b))

        error = validate_game(game["a"], game["b"], rules)
        if error:
            raise ScoreValidationError(error, i, (won_a, won_b))

        if game_winner(game) == SIDE_A:
            won_a += 1
        else:
            won_b += 1

    outcome = compute_match_outcome(normalized, rules)
    if not outcome.is_complete:
        raise ScoreValidationError(
            f"Match not complete, need {rules.games_to_win} games to win",
            len(normalized) + 1,
            (won_a, won_b),
        )
    return outcome
