"""
Rate Limiting

Two layers protect the auth endpoints:

- ``limiter`` is a slowapi Limiter keyed by client IP, applied as a route
  decorator to the verification endpoints (magic-link consume, OTP verify)
  to slow down guessing.
- ``IdentityRateLimiter`` enforces the issuance budgets that stop email
  bombing. Each budget is an independent fixed-window counter from the
  ``limits`` library, keyed by purpose and identity (email or IP), over a
  TTL-backed storage chosen by URI (in-memory by default, Redis when
  several instances share counters).

Usage in routers:
    from app.core.rate_limit import limiter

    @router.post("/otp/verify")
    @limiter.limit(lambda: settings.verify_limit_per_ip)
    async def verify_otp(request: Request, ...):
        ...
"""

import logging
import math
import time
from dataclasses import dataclass
from functools import lru_cache

from limits import parse
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string
from slowapi import Limiter

from app.core.config import get_settings
from app.core.ip import get_client_ip

logger = logging.getLogger(__name__)
settings = get_settings()

limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.rate_limit_enabled,
)


@dataclass(frozen=True)
class Budget:
    """One fixed-window counter: ``limit`` requests per window for ``identity``."""
    namespace: str
    limit: str
    identity: str


class IdentityRateLimiter:
    """Fixed-window issuance budgets shared by every request."""

    def __init__(self, storage_url: str, enabled: bool = True):
        self.enabled = enabled
        self._storage = storage_from_string(storage_url)
        self._strategy = FixedWindowRateLimiter(self._storage)

    async def consume(self, *budgets: Budget) -> int:
        """
        Count one request against every budget.

        Returns 0 when all budgets allow the request, otherwise the number
        of seconds until the latest tripped window resets. Budgets are all
        tested before any is hit, so a request refused by one budget does
        not use up the others. Each hit is an atomic increment in storage;
        a hit that lands over the limit still refuses the request.
        """
        if not self.enabled or not budgets:
            return 0

        items = [(parse(budget.limit), budget) for budget in budgets]

        try:
            tripped = [
                (item, budget) for item, budget in items
                if not await self._strategy.test(item, budget.namespace, budget.identity)
            ]
            if not tripped:
                for item, budget in items:
                    if not await self._strategy.hit(item, budget.namespace, budget.identity):
                        tripped.append((item, budget))

            if not tripped:
                return 0

            return await self._cooldown(tripped)
        except Exception as exc:
            logger.warning(
                "Rate limit storage unavailable, allowing request: %s",
                exc.__class__.__name__,
                exc_info=exc,
            )
            return 0

    async def _cooldown(self, tripped) -> int:
        now = time.time()
        cooldown = 1
        for item, budget in tripped:
            reset_at, _remaining = await self._strategy.get_window_stats(
                item, budget.namespace, budget.identity
            )
            cooldown = max(cooldown, math.ceil(reset_at - now))
            logger.info(
                "Rate limit tripped: %s (%s)",
                budget.namespace,
                budget.limit,
            )
        return cooldown

    async def reset(self) -> None:
        await self._storage.reset()


@lru_cache()
def get_issuance_limiter() -> IdentityRateLimiter:
    """Return the process-wide issuance limiter."""
    return IdentityRateLimiter(
        settings.rate_limit_storage_url,
        enabled=settings.rate_limit_enabled,
    )
