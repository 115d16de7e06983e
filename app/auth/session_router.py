"""
Session Endpoints

- GET  /v1/auth/me                   - current user and session; renews the cookie
- POST /v1/auth/logout               - revoke this session and clear the cookie
- POST /v1/auth/sessions/revoke-all  - revoke every session of the current user
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import current_session
from app.auth.session import SessionService, ValidatedSession
from app.core.config import Settings, get_settings
from app.db import get_session
from app.models.session import AuthenticatedResponse
from app.models.user import UserRead

router = APIRouter()


@router.get("/me", response_model=AuthenticatedResponse)
async def read_me(
    request: Request,
    response: Response,
    validated: ValidatedSession = Depends(current_session),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedResponse:
    """Return the signed-in user and re-issue the cookie with a fresh max-age."""
    bearer = SessionService.get_session_token_from_request(request, settings)
    SessionService.set_session_cookie(response, settings, bearer)

    return AuthenticatedResponse(
        user=UserRead.from_user(validated.user),
        session=SessionService.describe(settings, validated.session),
    )


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """
    Log out the current session.

    Succeeds without a cookie or with a stale one, always clearing it.
    """
    bearer = SessionService.get_session_token_from_request(request, settings)
    await SessionService.revoke(db, bearer, reason="logout")

    SessionService.clear_session_cookie(response, settings)
    return {"ok": True, "message": "Logged out successfully"}


@router.post("/sessions/revoke-all")
async def revoke_all_sessions(
    response: Response,
    validated: ValidatedSession = Depends(current_session),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Sign the current user out everywhere, including this browser."""
    revoked = await SessionService.revoke_all_for_user(
        db, validated.user.id, reason="revoke_all"
    )

    SessionService.clear_session_cookie(response, settings)
    return {"ok": True, "revoked": revoked}
