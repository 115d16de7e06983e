"""Tests for identity rate-limit budgets and client IP resolution."""

from unittest.mock import AsyncMock

import pytest
from starlette.requests import Request

from app.core.ip import get_client_ip
from app.core.rate_limit import Budget, IdentityRateLimiter


def make_request(headers=None, client=("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


# ===================================================================
# IdentityRateLimiter
# ===================================================================


class TestIdentityRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_until_budget_is_spent(self, issuance_limiter):
        budget = Budget("magic_link:email", "3/hour", "a@x.com")

        results = [await issuance_limiter.consume(budget) for _ in range(4)]

        assert results[:3] == [0, 0, 0]
        assert results[3] > 0

    @pytest.mark.asyncio
    async def test_cooldown_is_bounded_by_window(self, issuance_limiter):
        budget = Budget("otp:email:resend", "1/30 seconds", "a@x.com")

        assert await issuance_limiter.consume(budget) == 0
        cooldown = await issuance_limiter.consume(budget)

        assert 0 < cooldown <= 30

    @pytest.mark.asyncio
    async def test_identities_have_independent_budgets(self, issuance_limiter):
        assert await issuance_limiter.consume(Budget("otp:email", "1/hour", "a@x.com")) == 0

        assert await issuance_limiter.consume(Budget("otp:email", "1/hour", "b@x.com")) == 0
        assert await issuance_limiter.consume(Budget("otp:email", "1/hour", "a@x.com")) > 0

    @pytest.mark.asyncio
    async def test_namespaces_do_not_collide(self, issuance_limiter):
        assert await issuance_limiter.consume(Budget("magic_link:email", "1/hour", "a@x.com")) == 0

        assert await issuance_limiter.consume(Budget("otp:email", "1/hour", "a@x.com")) == 0

    @pytest.mark.asyncio
    async def test_refused_request_does_not_spend_other_budgets(self, issuance_limiter):
        email_budget = Budget("magic_link:email", "1/hour", "a@x.com")
        ip_budget = Budget("magic_link:ip", "2/hour", "1.2.3.4")

        assert await issuance_limiter.consume(email_budget, ip_budget) == 0
        assert await issuance_limiter.consume(email_budget, ip_budget) > 0

        # The refused request above must not have used the IP's second slot.
        other_email = Budget("magic_link:email", "1/hour", "b@x.com")
        assert await issuance_limiter.consume(other_email, ip_budget) == 0

    @pytest.mark.asyncio
    async def test_disabled_limiter_allows_everything(self):
        disabled = IdentityRateLimiter("async+memory://", enabled=False)
        budget = Budget("otp:email", "1/hour", "a@x.com")

        assert [await disabled.consume(budget) for _ in range(3)] == [0, 0, 0]

    @pytest.mark.asyncio
    async def test_storage_failure_fails_open(self, issuance_limiter):
        issuance_limiter._strategy.test = AsyncMock(side_effect=ConnectionError("redis down"))

        assert await issuance_limiter.consume(Budget("otp:email", "1/hour", "a@x.com")) == 0


# ===================================================================
# Client IP resolution
# ===================================================================


class TestClientIp:
    def test_prefers_cloudflare_header(self):
        request = make_request({"CF-Connecting-IP": "1.1.1.1", "X-Forwarded-For": "2.2.2.2"})

        assert get_client_ip(request) == "1.1.1.1"

    def test_uses_first_forwarded_hop(self):
        request = make_request({"X-Forwarded-For": "2.2.2.2, 10.0.0.1"})

        assert get_client_ip(request) == "2.2.2.2"

    def test_skips_invalid_header_values(self):
        request = make_request({"X-Forwarded-For": "garbage", "X-Real-IP": "3.3.3.3"})

        assert get_client_ip(request) == "3.3.3.3"

    def test_falls_back_to_socket_peer(self):
        assert get_client_ip(make_request()) == "10.0.0.9"

    def test_unknown_without_any_source(self):
        assert get_client_ip(make_request(client=None)) == "unknown"
