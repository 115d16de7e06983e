"""
One-Time Code Authentication Service

The typed alternative to a magic link: a 6-digit code emailed to the user
and entered in the dashboard. Codes are not signed; correctness is a
constant-time comparison of keyed hashes after looking up the live code
for the email.

Each issued code tolerates OTP_MAX_ATTEMPTS verification attempts. An
attempt is counted before the code is compared, in the same statement
that checks the cap, so parallel guesses cannot exceed the bound.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.issuance import charge_budgets, deliver_quietly, ensure_deliverable_email, normalize_email
from app.auth.session import SessionService
from app.auth.store import OtpStore, UserStore
from app.auth.tokens import digests_match, generate_numeric_code, hash_numeric_code
from app.core.config import Settings
from app.core.email import send_otp_email
from app.core.errors import OtpRejectedError
from app.core.rate_limit import Budget, IdentityRateLimiter
from app.models.magic_link import IssuanceResponse
from app.models.session import UserSession
from app.models.user import User

logger = logging.getLogger(__name__)

ISSUANCE_MESSAGE = "If that email exists, we sent a code."
RESEND_MESSAGE = "If that email exists, we sent a new code."


@dataclass
class VerifiedCode:
    user: User
    session: UserSession
    bearer: str
    is_new_user: bool


class OtpService:
    """Service class for one-time code operations."""

    @staticmethod
    def budgets(settings: Settings, email: str, ip_address: str):
        return (
            Budget("otp:email", settings.otp_limit_per_email, email),
            Budget("otp:ip", settings.otp_limit_per_ip, ip_address),
            Budget("otp:email:daily", settings.otp_limit_daily_per_email, email),
            Budget("otp:email:resend", settings.otp_resend_limit, email),
        )

    @staticmethod
    async def issue(
        db: AsyncSession,
        settings: Settings,
        limiter: IdentityRateLimiter,
        email: str,
        ip_address: str,
        user_agent: Optional[str],
        resend: bool = False,
    ) -> IssuanceResponse:
        """
        Mint and email a fresh code.

        Earlier codes for the email are not touched; they stop being the
        most recent one and are therefore dead.
        """
        email = ensure_deliverable_email(email)
        await charge_budgets(limiter, *OtpService.budgets(settings, email, ip_address))

        await UserStore.get_or_create(db, email=email)

        code = generate_numeric_code(settings.otp_code_length)
        now = datetime.now(timezone.utc)
        token = await OtpStore.create(
            db,
            email=email,
            code_hash=hash_numeric_code(code, email, settings.jwt_secret.get_secret_value()),
            created_at=now,
            expires_at=now + timedelta(minutes=settings.otp_ttl_minutes),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await db.commit()

        await deliver_quietly(
            lambda: send_otp_email(
                settings=settings,
                email=email,
                code=code,
                expires_in_minutes=settings.otp_ttl_minutes,
            ),
            email,
            "otp",
        )

        logger.info(
            "AUTH_EVENT otp_requested",
            extra={
                "event": "otp_resent" if resend else "otp_requested",
                "email": email,
                "ip": ip_address,
                "otp_id": str(token.id),
            },
        )
        return IssuanceResponse(
            message=RESEND_MESSAGE if resend else ISSUANCE_MESSAGE,
            cooldown=settings.otp_resend_cooldown_seconds,
        )

    @staticmethod
    async def verify(
        db: AsyncSession,
        settings: Settings,
        email: str,
        code: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> VerifiedCode:
        """
        Check a submitted code and open a session.

        Every failure raises the same OtpRejectedError.
        """
        email = normalize_email(email)
        now = datetime.now(timezone.utc)

        token = await OtpStore.get_live(db, email=email, now=now)
        if token is None:
            raise OtpRejectedError()

        reserved = await OtpStore.reserve_attempt(
            db,
            token_id=token.id,
            max_attempts=settings.otp_max_attempts,
        )
        await db.commit()
        if not reserved:
            logger.info(
                "AUTH_EVENT otp_attempts_exhausted",
                extra={"event": "otp_attempts_exhausted", "email": email, "ip": ip_address},
            )
            raise OtpRejectedError()

        expected = token.code_hash
        submitted = hash_numeric_code(code.strip(), email, settings.jwt_secret.get_secret_value())
        if not digests_match(expected, submitted):
            logger.info(
                "AUTH_EVENT otp_mismatch",
                extra={"event": "otp_mismatch", "email": email, "ip": ip_address},
            )
            raise OtpRejectedError()

        consumed = await OtpStore.mark_consumed(db, token_id=token.id, consumed_at=now)
        if not consumed:
            await db.rollback()
            raise OtpRejectedError()

        user = await UserStore.get_or_create(db, email=email)
        is_new_user = user.is_new_user
        session, bearer = await SessionService.create(db, settings, user, ip_address, user_agent)
        await db.commit()

        logger.info(
            "AUTH_EVENT otp_verified",
            extra={
                "event": "otp_verified",
                "user_id": str(user.id),
                "email": email,
                "ip": ip_address,
                "is_new_user": is_new_user,
            },
        )
        return VerifiedCode(user=user, session=session, bearer=bearer, is_new_user=is_new_user)
