"""Periodic removal of expired sessions.

validate_session() already deletes an expired row when it is presented, so
the sweep only reclaims rows nobody comes back for.
"""

import asyncio
import logging

from mozarela.api.sessions import sweep_expired
from mozarela.database import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def run_sweep(session_factory=AsyncSessionLocal) -> int:
    """One sweep in its own DB session. Failures are logged, not raised."""
    try:
        async with session_factory() as db:
            removed = await sweep_expired(db)
            await db.commit()
    except Exception as e:
        logger.error("Session cleanup error: %s", e)
        return 0

    if removed:
        logger.info("Cleaned up %d expired session(s)", removed)
    return removed


async def sweep_forever(interval_seconds: float, session_factory=AsyncSessionLocal) -> None:
    """Sweep on a fixed interval until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        await run_sweep(session_factory)
