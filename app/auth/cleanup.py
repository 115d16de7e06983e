"""
Credential Cleanup Sweep

Deletes rows that can no longer authenticate anyone:

- magic-link tokens past ``expires_at``
- OTP tokens past ``expires_at`` (consumed or not)
- sessions revoked or expired more than SESSION_RETENTION_DAYS ago

Nothing on the request path deletes credentials; run this periodically,
e.g. from cron:

    python -m app.auth.cleanup
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.store import MagicLinkStore, OtpStore, SessionStore
from app.core.config import Settings, get_settings
from app.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    magic_links: int
    otp_tokens: int
    sessions: int


async def sweep(db: AsyncSession, settings: Settings, now: Optional[datetime] = None) -> CleanupReport:
    """Delete dead credentials and report how many rows went."""
    now = now or datetime.now(timezone.utc)
    session_cutoff = now - timedelta(days=settings.session_retention_days)

    report = CleanupReport(
        magic_links=await MagicLinkStore.delete_expired(db, before=now),
        otp_tokens=await OtpStore.delete_expired(db, before=now),
        sessions=await SessionStore.delete_stale(db, before=session_cutoff),
    )
    await db.commit()

    logger.info("Credential cleanup finished", extra=asdict(report))
    return report


async def run() -> CleanupReport:
    from app.db import AsyncSessionLocal, engine

    try:
        async with AsyncSessionLocal() as db:
            return await sweep(db, get_settings())
    finally:
        await engine.dispose()


def main() -> None:
    configure_logging(get_settings())
    report = asyncio.run(run())
    print(
        f"Deleted {report.magic_links} magic links, "
        f"{report.otp_tokens} codes, {report.sessions} sessions"
    )


if __name__ == "__main__":
    main()
