"""
Competition engine error taxonomy.

Every rejected action surfaces one of these to its caller. Each error carries
a stable ``code`` so the HTTP layer (and any other caller) can react without
parsing messages.
"""

from typing import Optional, Tuple


class CompetitionEngineError(Exception):
    """Base class for every engine failure"""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFoundError(CompetitionEngineError):
    code = "NOT_FOUND"


class ConfigurationError(CompetitionEngineError):
    """Invalid pool/bracket parameters. Raised before any match is created."""

    code = "INVALID_CONFIGURATION"


class ActionValidationError(CompetitionEngineError):
    """Malformed action input. Raised before any state transition."""

    code = "INVALID_INPUT"


class ScoreValidationError(ActionValidationError):
    """Malformed or incomplete game scores"""

    code = "INVALID_SCORES"

    def __init__(self, message: str, game_index: Optional[int] = None, tally: Tuple[int, int] = (0, 0)):
        self.game_index = game_index
        self.tally = tally
        if game_index is not None:
            message = f"Game {game_index}: {message} (games {tally[0]}-{tally[1]})"
        super().__init__(message)


class MatchPermissionError(CompetitionEngineError):
    """Wrong actor for the attempted transition"""

    code = "PERMISSION_DENIED"


class InvalidTransitionError(CompetitionEngineError):
    """Action not allowed from the match's current state"""

    code = "INVALID_TRANSITION"


class MatchConflictError(CompetitionEngineError):
    """Concurrent transition race. Re-read the match and retry if still applicable."""

    code = "CONCURRENT_UPDATE"


class ImmutableMatchError(CompetitionEngineError):
    """Mutation attempted after external submission. Never retriable."""

    code = "ALREADY_SUBMITTED"


class RatingSubmissionError(CompetitionEngineError):
    """Rating service rejected the submission permanently"""

    code = "SUBMISSION_FAILED"


class RegistrationError(CompetitionEngineError):
    """Team registration lifecycle violation"""

    code = "REGISTRATION_ERROR"
