"""Background deletion sweep.

The sweep itself lives in services/deletion.py. This module only decides
when it runs: either once per invocation of ``accountkit sweep`` (cron), or
as an asyncio task in the app lifespan when DELETION_SWEEP_ENABLED is set.
A process-wide lock keeps two sweeps from overlapping; a tick that finds
the previous sweep still running is skipped.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from accountkit.core.config import get_settings
from accountkit.core.logging import get_logger

logger = get_logger(__name__)

_sweep_lock = asyncio.Lock()


async def run_deletion_sweep(now: datetime | None = None) -> int | None:
    """Run one sweep; returns the number of deleted users, None when skipped."""
    from accountkit.core.database import get_session_factory
    from accountkit.services.deletion import sweep

    if _sweep_lock.locked():
        logger.warning("Deletion sweep already running, skipping this cycle")
        return None

    async with _sweep_lock:
        factory = get_session_factory()
        async with factory() as session:
            return await sweep(session, now=now)


async def deletion_sweep_loop() -> None:
    """Infinite loop: wake every interval and finalize due deletions."""
    interval = get_settings().deletion_sweep_interval_seconds
    logger.info("Deletion sweep scheduler started", interval_seconds=interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await run_deletion_sweep()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Deletion sweep error, will retry next cycle")
