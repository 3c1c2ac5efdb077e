"""DUPR rating service client.

Submits official match results to DUPR's match API. A submission is one-way:
once DUPR accepts it the match becomes immutable.

Reads credentials from configuration (environment):
  - DUPR_API_BASE_URL
  - DUPR_CLIENT_KEY
  - DUPR_CLIENT_SECRET
  - DUPR_CLUB_ID (optional; CLUB source when set, PARTNER otherwise)

If credentials are not set, operates in dry-run mode (logs the submission
but doesn't send).
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from competition_engine import config
from competition_engine.models.match import Match
from competition_engine.models.team import Team
from competition_engine.models.tournament import Tournament
from competition_engine.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

TOKEN_PATH = "/auth/v1.0/token"
MATCH_CREATE_PATH = "/match/v1.0/create"

# DUPR answers a resubmission of a known identifier with one of these
ALREADY_EXISTS_MARKERS = ("already exists", "Object identifiers must be universally unique")


@dataclass
class SubmissionResult:
    success: bool
    submission_id: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class RatingService(Protocol):
    def submit(
        self, match: Match, teams: Sequence[Team], tournament: Optional[Tournament] = None
    ) -> SubmissionResult: ...


def submission_identifier(match: Match, tournament: Optional[Tournament]) -> str:
    """Deterministic per match so a retried submission is recognised by DUPR."""
    event_type = "league" if tournament is not None and tournament.is_league else "tournament"
    return f"{event_type}_{match.tournament_id}_{match.id}"


def build_match_payload(
    match: Match,
    teams: Sequence[Team],
    tournament: Optional[Tournament] = None,
    club_id: str = "",
) -> Dict[str, Any]:
    """
    Convert an official match into DUPR's create-match payload.

    teamA/teamB carry player1 (player2 for doubles) and game1..gameN; both
    sides always have the same game keys.
    """
    if len(teams) != 2:
        raise ValueError(f"Expected two teams, got {len(teams)}")
    if not match.games:
        raise ValueError(f"Match {match.id} has no game scores")

    team_a, team_b = teams
    is_doubles = len(team_a.player_ids) > 1 or len(team_b.player_ids) > 1

    def side(team: Team, key: str) -> Dict[str, Any]:
        out: Dict[str, Any] = {"player1": team.player_ids[0]}
        if len(team.player_ids) > 1:
            out["player2"] = team.player_ids[1]
        for i, game in enumerate(match.games, start=1):
            out[f"game{i}"] = game[key]
        return out

    finalized = match.finalized_at or utc_now()
    payload: Dict[str, Any] = {
        "identifier": submission_identifier(match, tournament),
        "event": tournament.name if tournament is not None else f"Tournament {match.tournament_id}",
        "format": "DOUBLES" if is_doubles else "SINGLES",
        "matchDate": finalized.date().isoformat(),
        "matchSource": "CLUB" if club_id else "PARTNER",
        "teamA": side(team_a, "a"),
        "teamB": side(team_b, "b"),
    }
    # PARTNER submissions must not carry a clubId key at all
    if club_id:
        payload["clubId"] = int(club_id)
    return payload


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"API error: {response.status_code}"
    if isinstance(data, dict):
        errors = data.get("errors") or [{}]
        return data.get("message") or data.get("error") or errors[0].get("message") or response.text
    return response.text or f"API error: {response.status_code}"


class DuprService:
    """
    Wrapper around the DUPR match API.

    If credentials are not configured, operates in dry-run mode
    (logs submissions but doesn't send).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_key: Optional[str] = None,
        client_secret: Optional[str] = None,
        club_id: Optional[str] = None,
        timeout: Optional[float] = None,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or config.DUPR_API_BASE_URL).rstrip("/")
        self.client_key = client_key if client_key is not None else config.DUPR_CLIENT_KEY
        self.client_secret = client_secret if client_secret is not None else config.DUPR_CLIENT_SECRET
        self.club_id = club_id if club_id is not None else config.DUPR_CLUB_ID
        self.timeout = timeout if timeout is not None else config.DUPR_TIMEOUT_SECONDS
        self.http = http or requests.Session()
        self.dry_run = not (self.client_key and self.client_secret)

        if self.dry_run:
            logger.warning(
                "DUPR credentials not configured. Running in dry-run mode. "
                "Set DUPR_CLIENT_KEY and DUPR_CLIENT_SECRET."
            )

    @property
    def is_configured(self) -> bool:
        """Check if DUPR is properly configured (not in dry-run mode)."""
        return not self.dry_run

    def get_token(self) -> str:
        """Exchange client credentials for a bearer token. Raises requests exceptions on failure."""
        credentials = base64.b64encode(f"{self.client_key}:{self.client_secret}".encode()).decode()
        response = self.http.post(
            f"{self.base_url}{TOKEN_PATH}",
            headers={"x-authorization": credentials, "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        token = data.get("token") or data.get("accessToken") or (data.get("result") or {}).get("token")
        if not token:
            raise requests.HTTPError("No token in DUPR token response", response=response)
        return token

    def submit(
        self, match: Match, teams: Sequence[Team], tournament: Optional[Tournament] = None
    ) -> SubmissionResult:
        """
        Submit one official match.

        Returns a SubmissionResult; transport and API errors are reported in
        ``error`` rather than raised.
        """
        try:
            payload = build_match_payload(match, teams, tournament, self.club_id)
        except ValueError as e:
            return SubmissionResult(success=False, error=str(e))

        if self.dry_run:
            logger.info(
                f"[DRY RUN] DUPR submission {payload['identifier']} "
                f"({payload['format']}, {len(match.games)} games)"
            )
            return SubmissionResult(
                success=True,
                submission_id=f"DRY_RUN_{utc_now().isoformat()}",
            )

        try:
            token = self.get_token()
            logger.info(
                f"Submitting match to DUPR: identifier={payload['identifier']}, "
                f"source={payload['matchSource']}, format={payload['format']}"
            )
            response = self.http.post(
                f"{self.base_url}{MATCH_CREATE_PATH}",
                json=payload,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"DUPR submission {payload['identifier']} failed: {e}")
            return SubmissionResult(success=False, error=str(e))

        if not response.ok:
            message = _error_message(response)
            if any(marker in message for marker in ALREADY_EXISTS_MARKERS):
                logger.info(f"Match {payload['identifier']} already exists in DUPR, treating as submitted")
                return SubmissionResult(
                    success=True,
                    submission_id="already-submitted",
                    warnings=["Match was already in DUPR database"],
                )
            logger.error(f"DUPR rejected {payload['identifier']}: status={response.status_code} error={message}")
            return SubmissionResult(success=False, error=message)

        data = response.json()
        submission_id = data.get("matchId") or data.get("id")
        logger.info(f"DUPR accepted {payload['identifier']}: matchId={submission_id}")
        return SubmissionResult(
            success=True, submission_id=str(submission_id) if submission_id is not None else None
        )


# Singleton instance
_dupr_service: Optional[DuprService] = None


def get_dupr_service() -> DuprService:
    """Get or create the singleton DuprService instance."""
    global _dupr_service
    if _dupr_service is None:
        _dupr_service = DuprService()
    return _dupr_service
