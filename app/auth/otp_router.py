"""
One-Time Code Endpoints

- POST /v1/auth/otp/request - email a 6-digit code
- POST /v1/auth/otp/verify  - exchange email + code for a session
- POST /v1/auth/otp/resend  - email a fresh code
"""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.otp import OtpService
from app.auth.session import SessionService
from app.core.config import Settings, get_settings
from app.core.ip import get_client_ip, get_user_agent
from app.core.rate_limit import IdentityRateLimiter, get_issuance_limiter, limiter
from app.db import get_session
from app.models.magic_link import IssuanceResponse
from app.models.otp import OtpRequest, OtpVerifyRequest
from app.models.session import AuthenticatedResponse
from app.models.user import UserRead

router = APIRouter(prefix="/otp")
settings = get_settings()


@router.post("/request", response_model=IssuanceResponse)
async def request_otp(
    body: OtpRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    issuance_limiter: IdentityRateLimiter = Depends(get_issuance_limiter),
) -> IssuanceResponse:
    """Email a sign-in code. The answer never reveals whether the email is known."""
    return await OtpService.issue(
        db=db,
        settings=settings,
        limiter=issuance_limiter,
        email=body.email,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


@router.post("/resend", response_model=IssuanceResponse)
async def resend_otp(
    body: OtpRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    issuance_limiter: IdentityRateLimiter = Depends(get_issuance_limiter),
) -> IssuanceResponse:
    return await OtpService.issue(
        db=db,
        settings=settings,
        limiter=issuance_limiter,
        email=body.email,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        resend=True,
    )


@router.post("/verify", response_model=AuthenticatedResponse)
@limiter.limit(lambda: settings.verify_limit_per_ip)
async def verify_otp(
    request: Request,
    response: Response,
    body: OtpVerifyRequest,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedResponse:
    """
    Verify a code and set the session cookie.

    Any failure is 400 INVALID_OR_EXPIRED.
    """
    verified = await OtpService.verify(
        db=db,
        settings=settings,
        email=body.email,
        code=body.code,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )

    SessionService.set_session_cookie(response, settings, verified.bearer)
    return AuthenticatedResponse(
        user=UserRead.from_user(verified.user),
        session=SessionService.describe(settings, verified.session),
    )
