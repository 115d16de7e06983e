"""
Magic Link Authentication Endpoints

- POST /v1/auth/magic-link/request - email a sign-in link
- GET  /v1/auth/magic-link/consume - redeem a link and open a session

Consumption answers with the session JSON and the session cookie, or with
a 302 to an allowlisted dashboard origin when the caller passes an
absolute ``redirect``.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.issuance import is_safe_relative_path
from app.auth.magic_link import ONBOARDING_PATH, MagicLinkService
from app.auth.session import SessionService
from app.core.config import Settings, get_settings
from app.core.ip import get_client_ip, get_user_agent
from app.core.rate_limit import IdentityRateLimiter, get_issuance_limiter, limiter
from app.db import get_session
from app.models.magic_link import IssuanceResponse, MagicLinkRequest
from app.models.session import AuthenticatedResponse
from app.models.user import UserRead

router = APIRouter(prefix="/magic-link")
logger = logging.getLogger(__name__)
settings = get_settings()


def allowlisted_redirect(settings: Settings, redirect: Optional[str]) -> Optional[str]:
    """Return the origin of ``redirect`` if it is an allowed absolute URL."""
    if not redirect:
        return None
    parsed = urlparse(redirect)
    if not parsed.scheme or not parsed.netloc:
        return None
    origin = f"{parsed.scheme}://{parsed.netloc}"
    if origin not in settings.redirect_allowlist:
        logger.warning("Ignoring redirect to non-allowlisted origin %s", origin)
        return None
    return origin


@router.post("/request", response_model=IssuanceResponse)
async def request_magic_link(
    body: MagicLinkRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    issuance_limiter: IdentityRateLimiter = Depends(get_issuance_limiter),
) -> IssuanceResponse:
    """
    Request a magic link for passwordless authentication.

    The response is the same whether or not the email is known and
    whether or not the email could be delivered.
    """
    return await MagicLinkService.issue(
        db=db,
        settings=settings,
        limiter=issuance_limiter,
        email=body.email,
        redirect_path=body.redirectPath,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


@router.get("/consume", response_model=AuthenticatedResponse)
@limiter.limit(lambda: settings.verify_limit_per_ip)
async def consume_magic_link(
    request: Request,
    response: Response,
    token: str,
    redirect: Optional[str] = None,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """
    Redeem a magic link token and create an authenticated session.

    Returns 401 with MAGIC_LINK_EXPIRED, MAGIC_LINK_USED or
    MAGIC_LINK_INVALID when the link cannot be used.
    """
    consumed = await MagicLinkService.consume(
        db=db,
        settings=settings,
        token=token,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )

    origin = allowlisted_redirect(settings, redirect)
    if origin is not None:
        target = f"{origin}{ONBOARDING_PATH}" if consumed.is_new_user else redirect
        redirect_response = RedirectResponse(target, status_code=302)
        SessionService.set_session_cookie(redirect_response, settings, consumed.bearer)
        return redirect_response

    redirect_path = consumed.redirect_path
    if not consumed.is_new_user and is_safe_relative_path(redirect):
        redirect_path = redirect

    SessionService.set_session_cookie(response, settings, consumed.bearer)
    return AuthenticatedResponse(
        user=UserRead.from_user(consumed.user),
        session=SessionService.describe(settings, consumed.session),
        redirectPath=redirect_path,
    )
