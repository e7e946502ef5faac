"""
Authentication — JWT issued by the identity store, or API key for programmatic access.

- Dashboard: Authorization: Bearer <jwt>, `sub` is the user id
- Programmatic: Authorization: Bearer <API_KEY>, acts on behalf of X-User-Id

In development with no API_KEY set, auth is skipped and the user id is taken
from X-User-Id (default "dev-user").
"""

import logging
from typing import Optional
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from rule_engine.config import get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

_bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


async def require_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Return the authenticated user id."""
    settings = get_settings()

    if not settings.api_key:
        if settings.is_production:
            raise HTTPException(
                status_code=500,
                detail="Server misconfiguration: API_KEY must be set in production.",
            )
        # Dev convenience: a valid JWT still wins so local tests can exercise it
        if credentials:
            payload = decode_access_token(credentials.credentials)
            if payload and payload.get("sub"):
                return str(payload["sub"])
        return x_user_id or "dev-user"

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Include header: Authorization: Bearer <token>",
        )

    token = credentials.credentials
    payload = decode_access_token(token)
    if payload and payload.get("sub"):
        return str(payload["sub"])

    if token == settings.api_key:
        if not x_user_id:
            raise HTTPException(status_code=400, detail="X-User-Id header is required with API key auth")
        return x_user_id

    raise HTTPException(status_code=401, detail="Invalid or expired token. Please log in again.")
