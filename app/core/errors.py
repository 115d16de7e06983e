"""
API Error Types and Handlers

Every failure the auth endpoints surface is one of these exceptions. They
subclass HTTPException so they can be raised from services, dependencies
and routes alike, and they all render through ``app_error_handler`` into
one envelope:

    {"ok": false, "error": ..., "code": ..., "message": ..., "cooldown"?, "details"?}

Infrastructure failures never reach the client with context attached; they
are logged here and replaced with an opaque INTERNAL response.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    """Base class for errors rendered in the auth error envelope."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        error: Optional[str] = None,
        cooldown: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.error = error or message
        self.cooldown = cooldown
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": False,
            "error": self.error,
            "code": self.code,
            "message": self.message,
        }
        if self.cooldown is not None:
            payload["cooldown"] = self.cooldown
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailedError(AppError):
    """Malformed or disallowed input (400)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=400,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class RateLimitedError(AppError):
    """An issuance or verification budget is exhausted (429)."""

    def __init__(self, cooldown: int, message: str = "Too many requests. Please try again later."):
        super().__init__(
            status_code=429,
            code="RATE_LIMITED",
            message=message,
            error="Too many requests",
            cooldown=cooldown,
            headers={"Retry-After": str(cooldown)},
        )


class UnauthorizedError(AppError):
    """Missing, invalid or expired session (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(status_code=401, code="UNAUTHORIZED", message=message)


class MagicLinkRejectedError(AppError):
    """A presented magic link cannot be consumed (401).

    The code tells the UI which message to show; every variant offers a resend.
    """

    MESSAGES = {
        "MAGIC_LINK_EXPIRED": "This magic link has expired. Please request a new one.",
        "MAGIC_LINK_USED": "This magic link has already been used. Please request a new one.",
        "MAGIC_LINK_INVALID": "This magic link is invalid. Please request a new one.",
    }

    def __init__(self, code: str):
        super().__init__(
            status_code=401,
            code=code,
            message=self.MESSAGES[code],
            cooldown=0,
            details={"canResend": True},
        )


class OtpRejectedError(AppError):
    """A submitted one-time code was not accepted (400).

    Wrong code, expired code, no code issued and attempt cap reached all look
    the same to the caller.
    """

    def __init__(self):
        super().__init__(
            status_code=400,
            code="INVALID_OR_EXPIRED",
            message="Invalid or expired code",
        )


class ConflictError(AppError):
    """The request conflicts with existing state (409)."""

    def __init__(self, error: str, message: str):
        super().__init__(status_code=409, code="CONFLICT", message=message, error=error)


class InternalError(AppError):
    """Infrastructure failure; never carries context to the client (500)."""

    def __init__(self):
        super().__init__(
            status_code=500,
            code="INTERNAL",
            message="Something went wrong. Please try again.",
            error="Internal server error",
        )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI body/query validation failures as VALIDATION_ERROR."""
    fields = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        fields.append({"field": location, "message": error.get("msg", "Invalid value")})

    error = ValidationFailedError("Invalid request", details={"fields": fields})
    return await app_error_handler(request, error)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi route limits in the same envelope as identity budgets."""
    cooldown = exc.limit.limit.get_expiry() if exc.limit is not None else 60
    return await app_error_handler(request, RateLimitedError(cooldown=cooldown))


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "Database failure on %s %s: %s",
        request.method,
        request.url.path,
        exc.__class__.__name__,
        exc_info=exc,
    )
    return await app_error_handler(request, InternalError())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return await app_error_handler(request, InternalError())
