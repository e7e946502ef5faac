"""
Shared utility functions.
"""

import logging
import uuid as uuid_mod
from datetime import datetime, timezone
from fastapi import HTTPException

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime.
    DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def elapsed_ms(started_at: datetime, completed_at: datetime) -> int:
    return int((completed_at - started_at).total_seconds() * 1000)


def parse_uuid(value: str, field_name: str = "id") -> uuid_mod.UUID:
    """Parse a path/query value as UUID, returning 400 instead of a 500 on bad input."""
    try:
        return uuid_mod.UUID(str(value))
    except (ValueError, AttributeError):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid UUID for '{field_name}': {value!r}",
        )


def safe_error_detail(exc: Exception, fallback: str = "An internal error occurred. Please try again later.") -> str:
    """Log the real exception server-side and return a client-safe message."""
    logger.error(f"Operation failed: {exc}", exc_info=exc)
    return fallback
