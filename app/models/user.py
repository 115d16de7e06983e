"""
User Data Models and Database Schema

This module defines the declarative base shared by every table, the
timestamp column type all models use, and the User table with its API
schemas.

A user is identified by their case-folded email. The username is claimed
at most once (nullable until then) and is the only thing that marks an
account as onboarded.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    PostgreSQL keeps the offset natively; SQLite stores naive values, so
    they are normalised to UTC on the way in and tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all database models."""
    pass


class User(Base):
    """Account row, created lazily the first time an email authenticates."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    email: Mapped[str] = mapped_column(
        String(320),
        unique=True,
        nullable=False,
        comment="Case-folded email address, the stable identity"
    )

    username: Mapped[Optional[str]] = mapped_column(
        String(30),
        unique=True,
        nullable=True,
        comment="Lower-cased public handle, set once during onboarding"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When a credential for this user was last consumed"
    )

    @property
    def is_new_user(self) -> bool:
        """A user counts as new until they have claimed a username."""
        return self.username is None


class UserRead(SQLModel):
    """User data schema for API responses."""
    id: UUID
    email: str
    username: Optional[str] = None
    isNewUser: bool

    @classmethod
    def from_user(cls, user: User) -> "UserRead":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            isNewUser=user.is_new_user,
        )


class UsernameClaimRequest(SQLModel):
    """Request schema for claiming a username."""
    username: str
