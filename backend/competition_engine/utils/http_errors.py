"""Translate engine errors into HTTPException for the route layer."""

from fastapi import HTTPException

from competition_engine.errors import (
    ActionValidationError,
    CompetitionEngineError,
    ConfigurationError,
    ImmutableMatchError,
    InvalidTransitionError,
    MatchConflictError,
    MatchPermissionError,
    NotFoundError,
    RatingSubmissionError,
    RegistrationError,
)

# First match wins; ScoreValidationError is covered by ActionValidationError
STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (MatchPermissionError, 403),
    (MatchConflictError, 409),
    (ImmutableMatchError, 409),
    (RatingSubmissionError, 502),
    (ConfigurationError, 422),
    (ActionValidationError, 422),
    (InvalidTransitionError, 422),
    (RegistrationError, 422),
)


def status_for(error: CompetitionEngineError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 400


def to_http_exception(error: CompetitionEngineError) -> HTTPException:
    """detail is "<CODE>: <message>"."""
    return HTTPException(status_code=status_for(error), detail=str(error))
