"""
Runtime configuration.

Every setting comes from the environment (optionally a .env file) so the
engine can run unchanged in tests, local development and production.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./competition.db")
SQL_ECHO = _env_bool("SQL_ECHO")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra_origins = os.getenv("CORS_ORIGINS", "")
if _extra_origins:
    CORS_ORIGINS.extend(o.strip() for o in _extra_origins.split(",") if o.strip())

# DUPR rating service (dry-run when credentials are missing)
DUPR_API_BASE_URL = os.getenv("DUPR_API_BASE_URL", "https://uat.mydupr.com/api").rstrip("/")
DUPR_CLIENT_KEY = os.getenv("DUPR_CLIENT_KEY", "")
DUPR_CLIENT_SECRET = os.getenv("DUPR_CLIENT_SECRET", "")
DUPR_CLUB_ID = os.getenv("DUPR_CLUB_ID", "")
DUPR_TIMEOUT_SECONDS = float(os.getenv("DUPR_TIMEOUT_SECONDS", "30"))

# Used only by callers that opt into retry_on_conflict()
MATCH_CONFLICT_RETRIES = int(os.getenv("MATCH_CONFLICT_RETRIES", "3"))
