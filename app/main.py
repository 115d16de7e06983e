"""
Lynkby Auth Backend - Main Application Entry Point

This module assembles the passwordless authentication API: magic links,
one-time codes, sliding server-side sessions and username setup, plus
health monitoring, into one FastAPI application.

Errors from every layer are rendered in the same ``{ok: false, code, ...}``
envelope by the handlers registered here; the slowapi limiter guarding the
verification endpoints is attached to ``app.state``.
"""

from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from app.auth import auth_router, setup_router
from app.core.config import get_settings
from app.core.errors import (
    AppError,
    app_error_handler,
    database_error_handler,
    rate_limit_exceeded_handler,
    unhandled_error_handler,
    validation_error_handler,
)
from app.core.logging_config import configure_logging
from app.core.rate_limit import limiter

settings = get_settings()
configure_logging(settings)

app = FastAPI(title="Lynkby Auth Backend")

app.state.limiter = limiter

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(SQLAlchemyError, database_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["meta"])
def health_check():
    """Simple health check endpoint returning application status."""
    return {
        "status": "ok",
        "environment": settings.environment.value,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


app.include_router(auth_router, prefix="/v1/auth", tags=["auth"])

app.include_router(setup_router, prefix="/v1/setup", tags=["setup"])
