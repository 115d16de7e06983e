"""
Token Codec

Pure functions that turn the server secret into credentials and hide
credentials at rest. Nothing here touches the database or keeps state
between calls.

- Magic-link and session bearers are HS256 JWTs, so the server learns who
  a credential claims to be without a lookup. Expiry is enforced by PyJWT
  at decode time.
- Anything persisted is a one-way digest: SHA-256 for the high-entropy
  bearers, HMAC-SHA256 keyed by the secret for the short numeric codes.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict

import jwt

ALGORITHM = "HS256"

MAGIC_LINK_TOKEN_TYPE = "magic_link"
SESSION_TOKEN_TYPE = "session"


class TokenFailure(str, Enum):
    EXPIRED = "EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    MALFORMED = "MALFORMED"


class TokenVerificationError(Exception):
    """A signed token could not be accepted."""

    def __init__(self, reason: TokenFailure):
        self.reason = reason
        super().__init__(reason.value)


def mint_signed_token(claims: Dict[str, Any], secret: str, ttl: timedelta) -> str:
    """
    Sign ``claims`` into a self-contained token valid for ``ttl``.

    ``iat``, ``exp`` and a random ``jti`` are added so two tokens minted in
    the same second for the same subject never collide.
    """
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "iat": now,
        "exp": now + ttl,
        "jti": secrets.token_urlsafe(16),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_signed_token(token: str, secret: str) -> Dict[str, Any]:
    """
    Return the claims of a valid token.

    Raises TokenVerificationError with EXPIRED, INVALID_SIGNATURE or
    MALFORMED. Tokens without ``exp`` are rejected as malformed.
    """
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenVerificationError(TokenFailure.EXPIRED) from exc
    except jwt.InvalidSignatureError as exc:
        raise TokenVerificationError(TokenFailure.INVALID_SIGNATURE) from exc
    except jwt.InvalidTokenError as exc:
        raise TokenVerificationError(TokenFailure.MALFORMED) from exc


def hash_for_storage(plaintext: str) -> str:
    """Deterministic SHA-256 hex digest used for lookup-by-hash."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def generate_numeric_code(length: int = 6) -> str:
    """Uniformly random, zero-padded decimal code."""
    return str(secrets.randbelow(10 ** length)).zfill(length)


def hash_numeric_code(code: str, email: str, secret: str) -> str:
    """Keyed digest of an OTP code, bound to the email it was issued for."""
    message = f"{email}:{code}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def digests_match(expected: str, candidate: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))
