import os

# Settings are read at import time by app modules; configure before importing them.
TEST_JWT_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DATABASE_URL_SYNC"] = "sqlite://"
os.environ["JWT_SECRET"] = TEST_JWT_SECRET
os.environ["ENVIRONMENT"] = "development"
os.environ["RESEND_API_KEY"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "true"

from collections.abc import AsyncGenerator, AsyncIterator  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from urllib.parse import parse_qs, urlparse  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from app.core.config import Settings, get_settings  # noqa: E402
from app.core.rate_limit import IdentityRateLimiter, get_issuance_limiter, limiter  # noqa: E402
from app.models import Base, User  # noqa: E402

PATCH_SEND_MAGIC_LINK = "app.auth.magic_link.send_magic_link_email"
PATCH_SEND_OTP = "app.auth.otp.send_otp_email"


def token_from_magic_link_call(send_mock) -> str:
    """Pull the plaintext token out of the URL handed to the email collaborator."""
    url = send_mock.call_args.kwargs["magic_link_url"]
    return parse_qs(urlparse(url).query)["token"][0]


def code_from_otp_call(send_mock) -> str:
    return send_mock.call_args.kwargs["code"]


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture(autouse=True)
def reset_route_limiter():
    """slowapi keeps counters in process memory; start every test clean."""
    limiter.reset()
    yield
    limiter.reset()


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine shared by every session in a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def issuance_limiter() -> IdentityRateLimiter:
    return IdentityRateLimiter("async+memory://", enabled=True)


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    user = User(email="owner@x.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@asynccontextmanager
async def serve(engine, issuance_limiter) -> AsyncIterator[AsyncClient]:
    """Run the app against ``engine`` with a fresh issuance limiter."""
    from app.db import get_session
    from app.main import app

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_issuance_limiter] = lambda: issuance_limiter

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(
            transport=transport,
            base_url="http://test",
            follow_redirects=False,
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(db_engine, issuance_limiter) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test database and a fresh limiter."""
    async with serve(db_engine, issuance_limiter) as ac:
        yield ac


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """
    File-backed SQLite engine where every session gets its own connection.

    The in-memory engine shares one connection between sessions, so a
    rollback in one request would undo another's writes. Tests that run
    requests in parallel need real transaction isolation.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine) -> async_sessionmaker:
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def concurrent_client(file_engine, issuance_limiter) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each hold their own database connection."""
    async with serve(file_engine, issuance_limiter) as ac:
        yield ac
