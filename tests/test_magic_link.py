"""Tests for magic link issuance and consumption at the service layer."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import func, select, update

from app.auth.issuance import is_safe_relative_path
from app.auth.magic_link import ISSUANCE_MESSAGE, MagicLinkService
from app.auth.store import MagicLinkStore
from app.auth.tokens import hash_for_storage, mint_signed_token
from app.core.email import EmailDeliveryError
from app.core.errors import MagicLinkRejectedError, RateLimitedError, ValidationFailedError
from app.models import MagicLinkToken, User, UserSession
from tests.conftest import PATCH_SEND_MAGIC_LINK, TEST_JWT_SECRET, token_from_magic_link_call

IP = "203.0.113.7"
UA = "pytest-agent"


async def issue(db, settings, limiter, email="a@x.com", redirect_path=None):
    with patch(PATCH_SEND_MAGIC_LINK, new_callable=AsyncMock) as send:
        response = await MagicLinkService.issue(
            db=db,
            settings=settings,
            limiter=limiter,
            email=email,
            redirect_path=redirect_path,
            ip_address=IP,
            user_agent=UA,
        )
    return response, send


async def consume(db, settings, token):
    return await MagicLinkService.consume(
        db=db, settings=settings, token=token, ip_address=IP, user_agent=UA
    )


# ===================================================================
# Issuance
# ===================================================================


class TestIssue:
    @pytest.mark.asyncio
    async def test_stores_hash_not_plaintext(self, db_session, settings, issuance_limiter):
        response, send = await issue(db_session, settings, issuance_limiter)
        token = token_from_magic_link_call(send)

        row = (await db_session.execute(select(MagicLinkToken))).scalar_one()
        assert row.email == "a@x.com"
        assert row.token_hash == hash_for_storage(token)
        assert row.token_hash != token
        assert row.used_at is None
        assert row.ip_created_from == IP
        assert response.message == ISSUANCE_MESSAGE
        assert response.cooldown == settings.magic_link_ui_cooldown_seconds

    @pytest.mark.asyncio
    async def test_email_is_case_folded_and_user_created(self, db_session, settings, issuance_limiter):
        await issue(db_session, settings, issuance_limiter, email="  Alice@X.com ")

        user = (await db_session.execute(select(User))).scalar_one()
        assert user.email == "alice@x.com"
        assert user.username is None

    @pytest.mark.asyncio
    async def test_link_points_at_dashboard_callback(self, db_session, settings, issuance_limiter):
        _, send = await issue(db_session, settings, issuance_limiter)

        url = send.call_args.kwargs["magic_link_url"]
        assert url.startswith(f"{settings.app_base_url}/auth/callback?token=")
        assert send.call_args.kwargs["expires_in_minutes"] == 15
        assert "redirect=" not in url

    @pytest.mark.asyncio
    async def test_link_carries_redirect_path(self, db_session, settings, issuance_limiter):
        _, send = await issue(db_session, settings, issuance_limiter, redirect_path="/links")

        query = parse_qs(urlparse(send.call_args.kwargs["magic_link_url"]).query)
        assert query["redirect"] == ["/links"]
        assert query["token"] == [token_from_magic_link_call(send)]

    @pytest.mark.asyncio
    async def test_disposable_domain_is_rejected(self, db_session, settings, issuance_limiter):
        with pytest.raises(ValidationFailedError):
            await issue(db_session, settings, issuance_limiter, email="a@mailinator.com")

    @pytest.mark.asyncio
    async def test_offsite_redirect_path_is_rejected(self, db_session, settings, issuance_limiter):
        with pytest.raises(ValidationFailedError):
            await issue(db_session, settings, issuance_limiter, redirect_path="//evil.com/x")

    @pytest.mark.asyncio
    async def test_reissue_keeps_one_row_per_email(self, db_session, settings, issuance_limiter):
        await issue(db_session, settings, issuance_limiter)
        await issue(db_session, settings, issuance_limiter)

        count = (await db_session.execute(select(func.count()).select_from(MagicLinkToken))).scalar_one()
        assert count == 1

    @pytest.mark.asyncio
    async def test_per_email_budget(self, db_session, settings, issuance_limiter):
        for _ in range(3):
            await issue(db_session, settings, issuance_limiter)

        with pytest.raises(RateLimitedError) as exc_info:
            await issue(db_session, settings, issuance_limiter)

        assert exc_info.value.cooldown > 0

    @pytest.mark.asyncio
    async def test_per_ip_budget(self, db_session, settings, issuance_limiter):
        tight = settings.model_copy(update={"magic_link_limit_per_ip": "2/hour"})
        await issue(db_session, tight, issuance_limiter, email="one@x.com")
        await issue(db_session, tight, issuance_limiter, email="two@x.com")

        with pytest.raises(RateLimitedError):
            await issue(db_session, tight, issuance_limiter, email="three@x.com")

    @pytest.mark.asyncio
    async def test_delivery_failure_still_returns_generic_success(
        self, db_session, settings, issuance_limiter
    ):
        failing = AsyncMock(side_effect=EmailDeliveryError("provider down"))
        with patch(PATCH_SEND_MAGIC_LINK, failing):
            response = await MagicLinkService.issue(
                db=db_session,
                settings=settings,
                limiter=issuance_limiter,
                email="a@x.com",
                redirect_path=None,
                ip_address=IP,
                user_agent=UA,
            )

        assert failing.await_count == 1
        assert response.ok is True
        assert response.message == ISSUANCE_MESSAGE


# ===================================================================
# Consumption
# ===================================================================


class TestConsume:
    @pytest.mark.asyncio
    async def test_new_user_gets_session_and_onboarding(self, db_session, settings, issuance_limiter):
        _, send = await issue(db_session, settings, issuance_limiter)

        consumed = await consume(db_session, settings, token_from_magic_link_call(send))

        assert consumed.is_new_user is True
        assert consumed.redirect_path == "/onboarding"
        assert consumed.user.email == "a@x.com"
        assert consumed.session.user_id == consumed.user.id
        assert consumed.session.token_hash == hash_for_storage(consumed.bearer)

        row = (await db_session.execute(select(MagicLinkToken))).scalar_one()
        await db_session.refresh(row)
        assert row.used_at is not None

    @pytest.mark.asyncio
    async def test_returning_user_goes_to_stored_redirect(self, db_session, settings, issuance_limiter):
        db_session.add(User(email="a@x.com", username="alice"))
        await db_session.commit()
        _, send = await issue(db_session, settings, issuance_limiter, redirect_path="/links")

        consumed = await consume(db_session, settings, token_from_magic_link_call(send))

        assert consumed.is_new_user is False
        assert consumed.redirect_path == "/links"

    @pytest.mark.asyncio
    async def test_returning_user_defaults_to_dashboard(self, db_session, settings, issuance_limiter):
        db_session.add(User(email="a@x.com", username="alice"))
        await db_session.commit()
        _, send = await issue(db_session, settings, issuance_limiter)

        consumed = await consume(db_session, settings, token_from_magic_link_call(send))

        assert consumed.redirect_path == "/dashboard"

    @pytest.mark.asyncio
    async def test_second_use_is_rejected(self, db_session, settings, issuance_limiter):
        _, send = await issue(db_session, settings, issuance_limiter)
        token = token_from_magic_link_call(send)
        await consume(db_session, settings, token)

        with pytest.raises(MagicLinkRejectedError) as exc_info:
            await consume(db_session, settings, token)

        assert exc_info.value.code == "MAGIC_LINK_USED"
        assert exc_info.value.details == {"canResend": True}
        sessions = (await db_session.execute(select(func.count()).select_from(UserSession))).scalar_one()
        assert sessions == 1

    @pytest.mark.asyncio
    async def test_mark_used_succeeds_once(self, db_session, settings, issuance_limiter):
        _, send = await issue(db_session, settings, issuance_limiter)
        token_hash = hash_for_storage(token_from_magic_link_call(send))
        row = await MagicLinkStore.get_by_hash(db_session, token_hash=token_hash)
        now = datetime.now(timezone.utc)

        first = await MagicLinkStore.mark_used(db_session, token_id=row.id, token_hash=token_hash, used_at=now)
        second = await MagicLinkStore.mark_used(db_session, token_id=row.id, token_hash=token_hash, used_at=now)

        assert (first, second) == (True, False)

    @pytest.mark.asyncio
    async def test_superseded_link_is_invalid(self, db_session, settings, issuance_limiter):
        _, first_send = await issue(db_session, settings, issuance_limiter)
        first_token = token_from_magic_link_call(first_send)
        _, second_send = await issue(db_session, settings, issuance_limiter)

        with pytest.raises(MagicLinkRejectedError) as exc_info:
            await consume(db_session, settings, first_token)
        assert exc_info.value.code == "MAGIC_LINK_INVALID"

        consumed = await consume(db_session, settings, token_from_magic_link_call(second_send))
        assert consumed.user.email == "a@x.com"

    @pytest.mark.asyncio
    async def test_expired_signature(self, db_session, settings):
        token = mint_signed_token(
            {"type": "magic_link", "email": "a@x.com", "tokenId": "x"},
            TEST_JWT_SECRET,
            timedelta(seconds=-1),
        )

        with pytest.raises(MagicLinkRejectedError) as exc_info:
            await consume(db_session, settings, token)

        assert exc_info.value.code == "MAGIC_LINK_EXPIRED"

    @pytest.mark.asyncio
    async def test_expired_row_is_rejected_even_with_valid_signature(
        self, db_session, settings, issuance_limiter
    ):
        _, send = await issue(db_session, settings, issuance_limiter)
        await db_session.execute(
            update(MagicLinkToken).values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        )
        await db_session.commit()

        with pytest.raises(MagicLinkRejectedError) as exc_info:
            await consume(db_session, settings, token_from_magic_link_call(send))

        assert exc_info.value.code == "MAGIC_LINK_EXPIRED"

    @pytest.mark.asyncio
    async def test_unknown_token_is_invalid(self, db_session, settings):
        token = mint_signed_token(
            {"type": "magic_link", "email": "a@x.com", "tokenId": "x"},
            TEST_JWT_SECRET,
            timedelta(minutes=5),
        )

        with pytest.raises(MagicLinkRejectedError) as exc_info:
            await consume(db_session, settings, token)

        assert exc_info.value.code == "MAGIC_LINK_INVALID"

    @pytest.mark.asyncio
    async def test_session_token_cannot_be_used_as_link(self, db_session, settings):
        token = mint_signed_token({"type": "session", "userId": "u"}, TEST_JWT_SECRET, timedelta(days=1))

        with pytest.raises(MagicLinkRejectedError) as exc_info:
            await consume(db_session, settings, token)

        assert exc_info.value.code == "MAGIC_LINK_INVALID"

    @pytest.mark.asyncio
    async def test_garbage_token_is_invalid(self, db_session, settings):
        with pytest.raises(MagicLinkRejectedError) as exc_info:
            await consume(db_session, settings, "garbage")

        assert exc_info.value.code == "MAGIC_LINK_INVALID"


# ===================================================================
# Redirect paths
# ===================================================================


class TestRedirectPaths:
    @pytest.mark.parametrize("path", ["/dashboard", "/links?tab=2", "/u/alice#top", "/a:b"])
    def test_accepts_same_site_paths(self, path):
        assert is_safe_relative_path(path) is True

    @pytest.mark.parametrize(
        "path",
        [
            None,
            "",
            "dashboard",
            "//evil.com",
            "/\\evil.com",
            "/\t/evil.com",
            "/\n/evil.com",
            "/\r/evil.com",
            "/\x7f/evil.com",
            "/%09/evil.com",
            "/%0a/evil.com",
            "/%2F/evil.com",
            "/%5Cevil.com",
            "https://evil.com/",
        ],
    )
    def test_rejects_paths_a_browser_could_send_offsite(self, path):
        assert is_safe_relative_path(path) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/\t/evil.com", "/\n/evil.com", "/%09/evil.com"])
    async def test_issue_refuses_control_characters(self, db_session, settings, issuance_limiter, path):
        with pytest.raises(ValidationFailedError):
            await issue(db_session, settings, issuance_limiter, redirect_path=path)

        count = (await db_session.execute(select(func.count()).select_from(MagicLinkToken))).scalar_one()
        assert count == 0
