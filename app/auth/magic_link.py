"""
Magic Link Authentication Service

Passwordless sign-in through single-use links sent by email.

Security features:
- Signed HS256 tokens carrying {type, email, tokenId, exp} (15 minutes)
- Only the SHA-256 of a token is stored
- One live link per email; a new request supersedes the previous one
- Consumption is gated by a conditional UPDATE, so a link yields at most
  one session no matter how many requests race to use it
- Issuance never reveals whether an address is known or the email was sent
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.issuance import (
    charge_budgets,
    deliver_quietly,
    ensure_deliverable_email,
    is_safe_relative_path,
)
from app.auth.session import SessionService
from app.auth.store import MagicLinkStore, UserStore
from app.auth.tokens import (
    MAGIC_LINK_TOKEN_TYPE,
    TokenFailure,
    TokenVerificationError,
    hash_for_storage,
    mint_signed_token,
    verify_signed_token,
)
from app.core.config import Settings
from app.core.email import send_magic_link_email
from app.core.errors import MagicLinkRejectedError, ValidationFailedError
from app.core.rate_limit import Budget, IdentityRateLimiter
from app.models.magic_link import IssuanceResponse
from app.models.session import UserSession
from app.models.user import User

logger = logging.getLogger(__name__)

ISSUANCE_MESSAGE = "If this email is registered, you'll receive a magic link shortly."

ONBOARDING_PATH = "/onboarding"
DASHBOARD_PATH = "/dashboard"


@dataclass
class ConsumedMagicLink:
    user: User
    session: UserSession
    bearer: str
    is_new_user: bool
    redirect_path: str


class MagicLinkService:
    """Service class for magic link authentication operations."""

    @staticmethod
    def build_magic_link_url(settings: Settings, token: str, redirect_path: Optional[str] = None) -> str:
        """Build the complete magic link URL for email delivery."""
        params = {"token": token}
        if redirect_path:
            params["redirect"] = redirect_path
        return f"{settings.app_base_url}/auth/callback?{urlencode(params)}"

    @staticmethod
    async def issue(
        db: AsyncSession,
        settings: Settings,
        limiter: IdentityRateLimiter,
        email: str,
        redirect_path: Optional[str],
        ip_address: str,
        user_agent: Optional[str],
    ) -> IssuanceResponse:
        """
        Mint and email a magic link.

        Always answers with the same generic message once the request has
        passed validation and rate limiting.
        """
        email = ensure_deliverable_email(email)
        if redirect_path is not None and not is_safe_relative_path(redirect_path):
            raise ValidationFailedError(
                "redirectPath must be a path on this site",
                details={"field": "redirectPath"},
            )

        await charge_budgets(
            limiter,
            Budget("magic_link:email", settings.magic_link_limit_per_email, email),
            Budget("magic_link:ip", settings.magic_link_limit_per_ip, ip_address),
        )

        await UserStore.get_or_create(db, email=email)

        ttl = timedelta(minutes=settings.magic_link_ttl_minutes)
        token = mint_signed_token(
            {"type": MAGIC_LINK_TOKEN_TYPE, "email": email, "tokenId": str(uuid4())},
            settings.jwt_secret.get_secret_value(),
            ttl,
        )
        token_hash = hash_for_storage(token)

        now = datetime.now(timezone.utc)
        await MagicLinkStore.upsert(
            db,
            email=email,
            token_hash=token_hash,
            created_at=now,
            expires_at=now + ttl,
            ip_address=ip_address,
            user_agent=user_agent,
            redirect_path=redirect_path,
        )
        await db.commit()

        url = MagicLinkService.build_magic_link_url(settings, token, redirect_path)
        await deliver_quietly(
            lambda: send_magic_link_email(
                settings=settings,
                email=email,
                magic_link_url=url,
                expires_in_minutes=settings.magic_link_ttl_minutes,
            ),
            email,
            "magic_link",
        )

        logger.info(
            "AUTH_EVENT magic_link_requested",
            extra={
                "event": "magic_link_requested",
                "email": email,
                "ip": ip_address,
                "token_hash_prefix": token_hash[:8],
            },
        )
        return IssuanceResponse(
            message=ISSUANCE_MESSAGE,
            cooldown=settings.magic_link_ui_cooldown_seconds,
        )

    @staticmethod
    async def consume(
        db: AsyncSession,
        settings: Settings,
        token: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> ConsumedMagicLink:
        """
        Redeem a magic link exactly once and open a session.

        Raises MagicLinkRejectedError with MAGIC_LINK_EXPIRED,
        MAGIC_LINK_USED or MAGIC_LINK_INVALID.
        """
        try:
            claims = verify_signed_token(token, settings.jwt_secret.get_secret_value())
        except TokenVerificationError as exc:
            if exc.reason == TokenFailure.EXPIRED:
                raise MagicLinkRejectedError("MAGIC_LINK_EXPIRED")
            raise MagicLinkRejectedError("MAGIC_LINK_INVALID")

        if claims.get("type") != MAGIC_LINK_TOKEN_TYPE:
            raise MagicLinkRejectedError("MAGIC_LINK_INVALID")

        token_hash = hash_for_storage(token)
        record = await MagicLinkStore.get_by_hash(db, token_hash=token_hash)
        if record is None or record.email != claims.get("email"):
            raise MagicLinkRejectedError("MAGIC_LINK_INVALID")
        if record.used_at is not None:
            raise MagicLinkRejectedError("MAGIC_LINK_USED")

        now = datetime.now(timezone.utc)
        if record.expires_at <= now:
            raise MagicLinkRejectedError("MAGIC_LINK_EXPIRED")

        claimed = await MagicLinkStore.mark_used(
            db,
            token_id=record.id,
            token_hash=token_hash,
            used_at=now,
        )
        if not claimed:
            await db.rollback()
            raise MagicLinkRejectedError("MAGIC_LINK_USED")

        user = await UserStore.get_or_create(db, email=record.email)
        is_new_user = user.is_new_user
        session, bearer = await SessionService.create(db, settings, user, ip_address, user_agent)
        await db.commit()

        if is_new_user:
            redirect_path = ONBOARDING_PATH
        else:
            redirect_path = record.redirect_path or DASHBOARD_PATH

        logger.info(
            "AUTH_EVENT magic_link_consumed",
            extra={
                "event": "magic_link_consumed",
                "user_id": str(user.id),
                "email": user.email,
                "ip": ip_address,
                "is_new_user": is_new_user,
            },
        )
        return ConsumedMagicLink(
            user=user,
            session=session,
            bearer=bearer,
            is_new_user=is_new_user,
            redirect_path=redirect_path,
        )
