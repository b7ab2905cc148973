"""Authentication dependencies for the booking API.

Teachers sign in with the external auth provider; the trusted front end
then opens a booking session on their behalf using the service token.

Two guards:
  - require_service_token()  — Bearer token for sign-in and admin endpoints
  - require_session()        — resolves {session_id} to an active session

Behavior matrix for the service token:
  SERVICE_API_KEY set + valid token   → allow
  SERVICE_API_KEY set + wrong/missing → 401 Unauthorized
  SERVICE_API_KEY empty + DEBUG=true  → allow (local dev convenience)
  SERVICE_API_KEY empty + DEBUG=false → 403 Forbidden (locked in production)
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from classroom_booking.config import settings
from classroom_booking.session import BookingSession, get_session

log = logging.getLogger("classroom_booking.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


async def require_service_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency — protect sign-in and admin endpoints with bearer token."""
    key = settings.service_api_key

    if not key:
        if settings.debug:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service API key not configured. Set SERVICE_API_KEY in .env.",
        )

    if credentials is None or credentials.credentials != key:
        log.warning("Rejected request with invalid service token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing service token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_session(session_id: str) -> BookingSession:
    """FastAPI dependency — look up the caller's active booking session."""
    session = get_session(session_id)
    if session is None or not session.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found. Please sign in again.",
        )
    return session
