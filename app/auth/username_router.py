"""
Username Setup Endpoints

- GET  /v1/setup/check-username?username=  - public availability check
- POST /v1/setup/username                  - claim a username (authenticated)
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import current_user
from app.auth.username import UsernameService, profile_urls
from app.core.config import Settings, get_settings
from app.db import get_session
from app.models.user import User, UserRead, UsernameClaimRequest

router = APIRouter()


@router.get("/check-username")
async def check_username(
    username: str,
    db: AsyncSession = Depends(get_session),
):
    availability = await UsernameService.check(db, username)
    payload = {"ok": True, "available": availability.available}
    if availability.reason:
        payload["reason"] = availability.reason
    return payload


@router.post("/username", status_code=201)
async def claim_username(
    body: UsernameClaimRequest,
    user: User = Depends(current_user),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """
    Claim a username for the signed-in user.

    201 on first claim, 200 when repeating the same claim, 400 for an
    invalid or reserved name, 409 TAKEN or USERNAME_ALREADY_SET.
    """
    result = await UsernameService.claim(db, user, body.username)

    payload = {
        "ok": True,
        "message": "Username claimed successfully" if result.created else "Username already claimed",
        "user": UserRead.from_user(result.user).model_dump(mode="json"),
        **profile_urls(settings, result.user.username),
    }
    return JSONResponse(status_code=201 if result.created else 200, content=payload)
