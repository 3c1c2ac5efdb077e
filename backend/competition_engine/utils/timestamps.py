"""
Timestamps.

Every stored timestamp is UTC and timezone-aware. Model validation in recent
SQLModel releases rejects naive datetimes, and datetime.utcnow() is deprecated.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
