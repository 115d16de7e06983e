"""
Session Management Models

Server-side sessions behind the ``lb_sess`` cookie. The cookie carries a
signed bearer token; this table stores only its SHA-256, so a database
leak yields no usable credential.

Rows are never deleted on the request path. Revocation sets ``revoked_at``
and expiry is a timestamp comparison, which keeps an audit trail until the
cleanup sweep removes rows past their retention window.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlmodel import SQLModel

from app.models.user import Base, UTCDateTime, UserRead, utcnow


class SessionStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class UserSession(Base):
    """A session established by consuming a magic link or OTP."""

    __tablename__ = "user_sessions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment="SHA-256 hex digest of the session bearer"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )

    last_used_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        comment="Slides forward on every successful validation"
    )

    revoked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    revoked_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    ip_created_from: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    ua_created_from: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    def status(self, now: datetime) -> SessionStatus:
        if self.revoked_at is not None:
            return SessionStatus.REVOKED
        if self.expires_at <= now:
            return SessionStatus.EXPIRED
        return SessionStatus.ACTIVE


class SessionRead(SQLModel):
    """Session information exposed to the dashboard."""
    expiresAt: datetime
    maxAge: int


class AuthenticatedResponse(SQLModel):
    """Response body for any flow that ends with a session."""
    ok: bool = True
    user: UserRead
    session: SessionRead
    redirectPath: Optional[str] = None
