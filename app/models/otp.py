"""
One-Time Code Models

OTP rows are append-only: every issuance inserts a fresh row and only the
most recent unconsumed, unexpired row for an email is considered live.
Older rows simply stop being "most recent" and age out through the
cleanup sweep.

``attempts`` only ever grows and is capped by configuration; once the cap
is reached the row is dead regardless of what code is submitted.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import EmailStr
from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlmodel import SQLModel

from app.models.user import Base, UTCDateTime, utcnow


class OtpToken(Base):
    """Hashed numeric code issued to an email address."""

    __tablename__ = "otp_tokens"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)

    code_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="HMAC-SHA256 of the code, bound to the email"
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

    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Verification attempts made against this code"
    )

    consumed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    ip_created_from: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    ua_created_from: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class OtpRequest(SQLModel):
    """Request schema for issuing or resending a code."""
    email: EmailStr


class OtpVerifyRequest(SQLModel):
    """Request schema for verifying a code."""
    email: EmailStr
    code: str
