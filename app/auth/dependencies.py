"""
Authentication Dependencies for Session-Based Auth

FastAPI dependencies that resolve the session cookie:

- current_session: validated (and renewed) session, 401 otherwise
- current_user: the user behind that session

Validation slides the session window, so any route depending on these
renews the caller's session.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.session import SessionService, ValidatedSession
from app.core.config import Settings, get_settings
from app.core.errors import UnauthorizedError
from app.db import get_session
from app.models.user import User


async def current_session(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> ValidatedSession:
    """
    Resolve the session cookie or fail with 401.

    Raises 401 both when no cookie is sent and when it no longer maps to an
    active session.
    """
    bearer = SessionService.get_session_token_from_request(request, settings)
    if not bearer:
        raise UnauthorizedError("Authentication required")

    validated = await SessionService.validate(db, settings, bearer)
    if validated is None:
        raise UnauthorizedError("Your session is invalid or has expired")

    return validated


async def current_user(validated: ValidatedSession = Depends(current_session)) -> User:
    """Get the current authenticated user from session."""
    return validated.user
