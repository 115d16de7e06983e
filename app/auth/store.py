"""
Credential Store

Stateless repositories for users, magic-link tokens, OTP tokens and
sessions. Every method takes the request's AsyncSession and keyword
arguments; none of them commit, so a service decides the transaction
boundary.

Anything that must hold under concurrent requests is expressed as a
single statement whose affected-row count is the answer:

- magic-link issuance is an upsert on the unique email index
- consumption and attempt counting are conditional UPDATEs
- username claims lean on the unique index on ``users.username``
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.magic_link import MagicLinkToken
from app.models.otp import OtpToken
from app.models.session import UserSession
from app.models.user import User


def _insert(db: AsyncSession, model):
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if db.bind.dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


class UserStore:
    """Stateless repository for the users table."""

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: UUID) -> Optional[User]:
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, *, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_username(db: AsyncSession, *, username: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create(db: AsyncSession, *, email: str) -> User:
        """
        Resolve the user for a case-folded email, creating it if unseen.

        Concurrent first requests for the same email both succeed: the
        losing insert is a no-op on the unique index.
        """
        stmt = (
            _insert(db, User)
            .values(id=uuid4(), email=email)
            .on_conflict_do_nothing(index_elements=["email"])
        )
        await db.execute(stmt)

        user = await UserStore.get_by_email(db, email=email)
        if user is None:
            raise LookupError(f"user row for {email} vanished after upsert")
        return user

    @staticmethod
    async def record_login(db: AsyncSession, *, user_id: UUID, at: datetime) -> None:
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(last_login_at=at)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def set_username_once(db: AsyncSession, *, user_id: UUID, username: str) -> bool:
        """
        Set the username if the user has none yet.

        Returns False when the user already had a username. Raises
        IntegrityError when another user holds ``username``.
        """
        result = await db.execute(
            update(User)
            .where(User.id == user_id, User.username.is_(None))
            .values(username=username)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class MagicLinkStore:
    """Stateless repository for the magic_link_tokens table."""

    @staticmethod
    async def upsert(
        db: AsyncSession,
        *,
        email: str,
        token_hash: str,
        created_at: datetime,
        expires_at: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
        redirect_path: Optional[str],
    ) -> None:
        """Store a token for ``email``, superseding any previous one."""
        fields = {
            "token_hash": token_hash,
            "created_at": created_at,
            "expires_at": expires_at,
            "used_at": None,
            "ip_created_from": ip_address,
            "ua_created_from": user_agent,
            "redirect_path": redirect_path,
        }
        stmt = _insert(db, MagicLinkToken).values(id=uuid4(), email=email, **fields)
        stmt = stmt.on_conflict_do_update(index_elements=["email"], set_=fields)
        await db.execute(stmt)

    @staticmethod
    async def get_by_hash(db: AsyncSession, *, token_hash: str) -> Optional[MagicLinkToken]:
        result = await db.execute(
            select(MagicLinkToken).where(MagicLinkToken.token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_used(
        db: AsyncSession,
        *,
        token_id: UUID,
        token_hash: str,
        used_at: datetime,
    ) -> bool:
        """
        Flip ``used_at`` from NULL to ``used_at``.

        Returns True for exactly one caller per issued token; a concurrent
        consumer or a superseding re-issue makes it return False.
        """
        result = await db.execute(
            update(MagicLinkToken)
            .where(
                MagicLinkToken.id == token_id,
                MagicLinkToken.token_hash == token_hash,
                MagicLinkToken.used_at.is_(None),
            )
            .values(used_at=used_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def delete_expired(db: AsyncSession, *, before: datetime) -> int:
        result = await db.execute(
            delete(MagicLinkToken).where(MagicLinkToken.expires_at < before)
        )
        return result.rowcount


class OtpStore:
    """Stateless repository for the otp_tokens table."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        code_hash: str,
        created_at: datetime,
        expires_at: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> OtpToken:
        token = OtpToken(
            email=email,
            code_hash=code_hash,
            created_at=created_at,
            expires_at=expires_at,
            attempts=0,
            ip_created_from=ip_address,
            ua_created_from=user_agent,
        )
        db.add(token)
        await db.flush()
        return token

    @staticmethod
    async def get_live(db: AsyncSession, *, email: str, now: datetime) -> Optional[OtpToken]:
        """Most recent unconsumed, unexpired code for ``email``."""
        result = await db.execute(
            select(OtpToken)
            .where(
                OtpToken.email == email,
                OtpToken.consumed_at.is_(None),
                OtpToken.expires_at > now,
            )
            .order_by(OtpToken.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def reserve_attempt(db: AsyncSession, *, token_id: UUID, max_attempts: int) -> bool:
        """
        Count one verification attempt against a code.

        The increment and the cap check are one statement, so parallel
        submissions can never push ``attempts`` past ``max_attempts``.
        Returns False when the cap is already reached or the code is spent.
        """
        result = await db.execute(
            update(OtpToken)
            .where(
                OtpToken.id == token_id,
                OtpToken.attempts < max_attempts,
                OtpToken.consumed_at.is_(None),
            )
            .values(attempts=OtpToken.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def mark_consumed(db: AsyncSession, *, token_id: UUID, consumed_at: datetime) -> bool:
        result = await db.execute(
            update(OtpToken)
            .where(OtpToken.id == token_id, OtpToken.consumed_at.is_(None))
            .values(consumed_at=consumed_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def delete_expired(db: AsyncSession, *, before: datetime) -> int:
        result = await db.execute(delete(OtpToken).where(OtpToken.expires_at < before))
        return result.rowcount


class SessionStore:
    """Stateless repository for the user_sessions table."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: UUID,
        token_hash: str,
        created_at: datetime,
        expires_at: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> UserSession:
        session = UserSession(
            user_id=user_id,
            token_hash=token_hash,
            created_at=created_at,
            last_used_at=created_at,
            expires_at=expires_at,
            ip_created_from=ip_address,
            ua_created_from=user_agent,
        )
        db.add(session)
        await db.flush()
        return session

    @staticmethod
    async def get_by_hash(db: AsyncSession, *, token_hash: str) -> Optional[UserSession]:
        result = await db.execute(
            select(UserSession).where(UserSession.token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def slide(
        db: AsyncSession,
        *,
        session_id: UUID,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """Renew an active session; revoked or expired rows are left alone."""
        result = await db.execute(
            update(UserSession)
            .where(
                UserSession.id == session_id,
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > now,
            )
            .values(last_used_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def revoke(db: AsyncSession, *, session_id: UUID, reason: str, at: datetime) -> bool:
        result = await db.execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.revoked_at.is_(None))
            .values(revoked_at=at, revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def revoke_all_for_user(
        db: AsyncSession,
        *,
        user_id: UUID,
        reason: str,
        at: datetime,
    ) -> int:
        result = await db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.revoked_at.is_(None))
            .values(revoked_at=at, revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def delete_stale(db: AsyncSession, *, before: datetime) -> int:
        """Delete sessions revoked or expired before ``before``."""
        result = await db.execute(
            delete(UserSession).where(
                or_(UserSession.revoked_at < before, UserSession.expires_at < before)
            )
        )
        return result.rowcount
