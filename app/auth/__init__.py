"""
Authentication System Assembly

Collects the passwordless auth endpoints into the two routers mounted by
the application:

- ``auth_router`` (mounted at /v1/auth): magic links, one-time codes and
  session endpoints
- ``setup_router`` (mounted at /v1/setup): username availability and claim
"""

from fastapi import APIRouter

from app.auth.magic_link_router import router as magic_link_router
from app.auth.otp_router import router as otp_router
from app.auth.session_router import router as session_router
from app.auth.username_router import router as username_router

auth_router = APIRouter()
auth_router.include_router(magic_link_router)
auth_router.include_router(otp_router)
auth_router.include_router(session_router)

setup_router = APIRouter()
setup_router.include_router(username_router)
