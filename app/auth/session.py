"""
Session Management Service

Server-side sessions behind an HttpOnly cookie. The cookie value is a
signed bearer token; the database keeps only its hash, so revocation is
immediate and a leaked table yields nothing usable.

Lifecycle: Created -> Active (renewed on every validation) -> Revoked or
Expired. Every successful validation slides ``expires_at`` to
now + SESSION_TTL_DAYS, so a session only dies from inactivity, logout or
explicit revocation. Revoked and expired rows stay in place for audit
until the cleanup sweep removes them.

None of the operations here raise for a bad or unknown bearer; only
infrastructure failures propagate.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from uuid import UUID

from fastapi import Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.store import SessionStore, UserStore
from app.auth.tokens import (
    SESSION_TOKEN_TYPE,
    TokenVerificationError,
    hash_for_storage,
    mint_signed_token,
    verify_signed_token,
)
from app.core.config import Settings
from app.models.session import SessionRead, SessionStatus, UserSession
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class ValidatedSession:
    user: User
    session: UserSession


class SessionService:
    """Service class for session management operations."""

    @staticmethod
    def max_age_seconds(settings: Settings) -> int:
        return settings.session_ttl_days * 24 * 60 * 60

    @staticmethod
    async def create(
        db: AsyncSession,
        settings: Settings,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[UserSession, str]:
        """
        Create a session for ``user`` and return it with its plaintext bearer.

        The bearer is only ever handed to the cookie; the row stores its hash.
        Does not commit.
        """
        now = datetime.now(timezone.utc)
        bearer = mint_signed_token(
            {
                "type": SESSION_TOKEN_TYPE,
                "userId": str(user.id),
                "email": user.email,
                "username": user.username,
            },
            settings.jwt_secret.get_secret_value(),
            timedelta(days=settings.session_token_lifetime_days),
        )

        session = await SessionStore.create(
            db,
            user_id=user.id,
            token_hash=hash_for_storage(bearer),
            created_at=now,
            expires_at=now + timedelta(days=settings.session_ttl_days),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await UserStore.record_login(db, user_id=user.id, at=now)

        logger.info(
            "AUTH_EVENT session_created",
            extra={
                "event": "session_created",
                "user_id": str(user.id),
                "session_id": str(session.id),
                "ip": ip_address,
            },
        )
        return session, bearer

    @staticmethod
    async def validate(
        db: AsyncSession,
        settings: Settings,
        bearer: Optional[str],
    ) -> Optional[ValidatedSession]:
        """
        Resolve a bearer to its user and session, sliding the window.

        Returns None for a missing, tampered, unknown, revoked or expired
        bearer. Commits the renewal.
        """
        if not bearer:
            return None

        try:
            claims = verify_signed_token(bearer, settings.jwt_secret.get_secret_value())
        except TokenVerificationError as exc:
            logger.debug("Session bearer rejected: %s", exc.reason.value)
            return None
        if claims.get("type") != SESSION_TOKEN_TYPE:
            return None

        session = await SessionStore.get_by_hash(db, token_hash=hash_for_storage(bearer))
        if session is None:
            return None

        now = datetime.now(timezone.utc)
        status = session.status(now)
        if status != SessionStatus.ACTIVE:
            logger.info(
                "Session %s presented while %s",
                session.id,
                status.value,
            )
            return None

        renewed = await SessionStore.slide(
            db,
            session_id=session.id,
            now=now,
            expires_at=now + timedelta(days=settings.session_ttl_days),
        )
        if not renewed:
            # Revoked or expired between the read and the update.
            return None
        await db.commit()
        await db.refresh(session)

        user = await UserStore.get_by_id(db, session.user_id)
        if user is None:
            return None

        return ValidatedSession(user=user, session=session)

    @staticmethod
    async def revoke(db: AsyncSession, bearer: Optional[str], reason: str = "logout") -> bool:
        """
        Revoke the session behind ``bearer``.

        Unknown or already revoked bearers are a no-op; a bearer whose
        signature has expired can still be revoked by hash.
        """
        if not bearer:
            return False

        session = await SessionStore.get_by_hash(db, token_hash=hash_for_storage(bearer))
        if session is None:
            return False

        revoked = await SessionStore.revoke(
            db,
            session_id=session.id,
            reason=reason,
            at=datetime.now(timezone.utc),
        )
        await db.commit()

        if revoked:
            logger.info(
                "AUTH_EVENT session_revoked",
                extra={
                    "event": "session_revoked",
                    "user_id": str(session.user_id),
                    "session_id": str(session.id),
                    "reason": reason,
                },
            )
        return revoked

    @staticmethod
    async def revoke_all_for_user(db: AsyncSession, user_id: UUID, reason: str) -> int:
        """Revoke every active session of a user. Returns how many were revoked."""
        count = await SessionStore.revoke_all_for_user(
            db,
            user_id=user_id,
            reason=reason,
            at=datetime.now(timezone.utc),
        )
        await db.commit()

        logger.info(
            "AUTH_EVENT sessions_revoked_all",
            extra={
                "event": "sessions_revoked_all",
                "user_id": str(user_id),
                "count": count,
                "reason": reason,
            },
        )
        return count

    @staticmethod
    def describe(settings: Settings, session: UserSession) -> SessionRead:
        return SessionRead(
            expiresAt=session.expires_at,
            maxAge=SessionService.max_age_seconds(settings),
        )

    @staticmethod
    def set_session_cookie(response: Response, settings: Settings, bearer: str) -> None:
        """Set (or re-issue) the session cookie on the response."""
        response.set_cookie(
            key=settings.session_cookie_name,
            value=bearer,
            max_age=SessionService.max_age_seconds(settings),
            path="/",
            domain=settings.session_cookie_domain,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )

    @staticmethod
    def get_session_token_from_request(request: Request, settings: Settings) -> Optional[str]:
        """Extract session token from request cookie."""
        return request.cookies.get(settings.session_cookie_name)

    @staticmethod
    def clear_session_cookie(response: Response, settings: Settings) -> None:
        """Clear session cookie from the response."""
        response.delete_cookie(
            key=settings.session_cookie_name,
            path="/",
            domain=settings.session_cookie_domain,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )
