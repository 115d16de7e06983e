"""
Credential Issuance Helpers

The magic-link and OTP request endpoints share the same front half:
normalise and vet the email, charge the rate-limit budgets, and hand the
credential to the email collaborator without letting the outcome leak
into the response.
"""

import logging
from typing import Awaitable, Callable, Optional
from urllib.parse import unquote, urlparse

from app.core.email import EmailDeliveryError
from app.core.errors import RateLimitedError, ValidationFailedError
from app.core.rate_limit import Budget, IdentityRateLimiter

logger = logging.getLogger(__name__)

DISPOSABLE_EMAIL_DOMAINS = frozenset({
    "10minutemail.com", "10minutemail.net",
    "tempmail.org", "tempmail.com", "tempmail.net",
    "temp-mail.org", "temp-mail.com", "temp-mail.net",
    "guerrillamail.com", "guerrillamail.net", "guerrillamail.org",
    "mailinator.com", "mailinator.net",
    "yopmail.com", "yopmail.net",
    "throwaway.email",
    "sharklasers.com",
    "getairmail.com",
    "mailnesia.com",
    "maildrop.cc",
    "mailmetrash.com",
    "trashmail.com", "trashmail.net",
    "spam4.me",
    "bccto.me",
    "chacuo.net",
    "dispostable.com",
    "fakeinbox.com",
    "mailcatch.com",
    "mailnull.com",
    "spamspot.com",
    "tempr.email",
    "tmpeml.com",
    "tmpmail.net", "tmpmail.org",
    "temporary-mail.net",
    "temporarymail.com",
})


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_disposable_email(email: str) -> bool:
    domain = email.rsplit("@", 1)[-1].lower()
    return domain in DISPOSABLE_EMAIL_DOMAINS


def ensure_deliverable_email(email: str) -> str:
    """Case-fold ``email`` and reject throwaway domains."""
    normalized = normalize_email(email)
    if is_disposable_email(normalized):
        raise ValidationFailedError(
            "Disposable email addresses are not allowed",
            details={"field": "email"},
        )
    return normalized


async def charge_budgets(limiter: IdentityRateLimiter, *budgets: Budget) -> None:
    """Raise RateLimitedError unless every budget has room."""
    cooldown = await limiter.consume(*budgets)
    if cooldown:
        raise RateLimitedError(cooldown=cooldown)


async def deliver_quietly(
    send: Callable[[], Awaitable[None]],
    email: str,
    kind: str,
) -> bool:
    """
    Run an email send, logging rather than raising on delivery failure.

    The issuance response is identical whether or not delivery worked.
    """
    try:
        await send()
    except EmailDeliveryError as exc:
        logger.error(
            "Failed to deliver %s email to %s: %s",
            kind,
            email,
            exc,
            extra={"event": "email_delivery_failed", "email": email, "kind": kind},
        )
        return False
    return True


def is_safe_relative_path(path: Optional[str]) -> bool:
    """
    True for same-site absolute paths such as ``/dashboard``.

    The path is checked both as sent and percent-decoded. Control characters
    are refused outright: browsers drop tab, CR and LF while parsing a URL,
    which turns ``/<TAB>/host`` into the protocol-relative ``//host``.
    """
    if not path:
        return False

    decoded = unquote(path)
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in decoded):
        return False
    if "\\" in decoded:
        return False
    if not path.startswith("/") or decoded.startswith("//"):
        return False

    parsed = urlparse(decoded)
    return not parsed.scheme and not parsed.netloc
