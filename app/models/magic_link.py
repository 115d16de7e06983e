"""
Magic Link Token Models

One row per email: a new request overwrites the previous token for that
address (upsert on the unique email index), so at most one magic link is
ever live for a given user. Only the SHA-256 of the emailed token is
stored; the plaintext exists solely in the email.

A row is mutated exactly once after creation, to set ``used_at`` on
consumption, and is purged by the cleanup sweep after ``expires_at``.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import EmailStr
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from sqlmodel import SQLModel

from app.models.user import Base, UTCDateTime, utcnow


class MagicLinkToken(Base):
    """Hashed magic-link credential awaiting consumption."""

    __tablename__ = "magic_link_tokens"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    email: Mapped[str] = mapped_column(
        String(320),
        unique=True,
        nullable=False,
        comment="Case-folded recipient; unique so re-issuance supersedes"
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment="SHA-256 hex digest of the emailed token"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )

    used_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Set once, when the link is consumed"
    )

    ip_created_from: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    ua_created_from: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    redirect_path: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Relative path to land on after a returning user signs in"
    )


class MagicLinkRequest(SQLModel):
    """Request schema for issuing a magic link."""
    email: EmailStr
    redirectPath: Optional[str] = None


class IssuanceResponse(SQLModel):
    """Generic success returned by every issuance endpoint."""
    ok: bool = True
    message: str
    cooldown: int
