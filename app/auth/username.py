"""
Username Claim Service

A user picks their public handle once, during onboarding. Handles are
stored lower-cased and are unique across the service; the unique index on
``users.username`` decides races between two users claiming the same name.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.store import UserStore
from app.core.config import Settings
from app.core.errors import ConflictError, ValidationFailedError
from app.models.user import User

logger = logging.getLogger(__name__)

MIN_LENGTH = 3
MAX_LENGTH = 30
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

RESERVED_USERNAMES = frozenset({
    "www", "app", "api", "admin", "support", "blog", "cdn", "static",
    "docs", "pricing", "status", "dashboard", "help", "mail", "dev", "stage",
    "login", "logout", "signup", "auth", "profile", "settings", "onboarding",
})

USERNAME_ERRORS = {
    "EMPTY": "Username is required",
    "TOO_SHORT": f"Username must be at least {MIN_LENGTH} characters",
    "TOO_LONG": f"Username must be at most {MAX_LENGTH} characters",
    "INVALID_CHARS": "Username can only contain letters, numbers, hyphens, and underscores",
    "RESERVED_WORD": "This username is reserved",
    "ALREADY_TAKEN": "This username is already taken",
}


@dataclass
class ClaimResult:
    user: User
    created: bool


@dataclass
class Availability:
    available: bool
    reason: Optional[str] = None


def normalize_username(username: str) -> str:
    return username.strip().lower()


def username_problem(username: str) -> Optional[str]:
    """Return the USERNAME_ERRORS key describing what is wrong, or None."""
    candidate = username.strip()
    if not candidate:
        return "EMPTY"
    if len(candidate) < MIN_LENGTH:
        return "TOO_SHORT"
    if len(candidate) > MAX_LENGTH:
        return "TOO_LONG"
    if not USERNAME_PATTERN.match(candidate):
        return "INVALID_CHARS"
    if candidate.lower() in RESERVED_USERNAMES:
        return "RESERVED_WORD"
    return None


def profile_urls(settings: Settings, username: str) -> dict:
    return {
        "liveUrl": f"https://{username}.{settings.public_profile_domain}",
        "fallbackUrl": f"https://{settings.public_profile_domain}/u/{username}",
    }


class UsernameService:
    """Service class for username availability and claims."""

    @staticmethod
    async def check(db: AsyncSession, username: str) -> Availability:
        problem = username_problem(username)
        if problem:
            return Availability(available=False, reason=USERNAME_ERRORS[problem])

        existing = await UserStore.get_by_username(db, username=normalize_username(username))
        if existing is not None:
            return Availability(available=False, reason=USERNAME_ERRORS["ALREADY_TAKEN"])
        return Availability(available=True)

    @staticmethod
    async def claim(db: AsyncSession, user: User, username: str) -> ClaimResult:
        """
        Set ``user``'s username once.

        Re-claiming the same name is a no-op success. Raises
        ValidationFailedError for a bad name and ConflictError with
        TAKEN or USERNAME_ALREADY_SET.
        """
        problem = username_problem(username)
        if problem:
            raise ValidationFailedError(
                USERNAME_ERRORS[problem],
                details={"field": "username", "reason": problem},
            )

        normalized = normalize_username(username)
        if user.username == normalized:
            return ClaimResult(user=user, created=False)
        if user.username is not None:
            raise ConflictError("USERNAME_ALREADY_SET", "User already has a different username")

        user_id = user.id
        try:
            claimed = await UserStore.set_username_once(db, user_id=user_id, username=normalized)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("Username %s already taken, claim by %s refused", normalized, user_id)
            raise ConflictError("TAKEN", USERNAME_ERRORS["ALREADY_TAKEN"])

        await db.refresh(user)
        if not claimed:
            # Another request for this user set a username first.
            if user.username == normalized:
                return ClaimResult(user=user, created=False)
            raise ConflictError("USERNAME_ALREADY_SET", "User already has a different username")

        logger.info(
            "AUTH_EVENT username_claimed",
            extra={"event": "username_claimed", "user_id": str(user.id), "username": normalized},
        )
        return ClaimResult(user=user, created=True)
