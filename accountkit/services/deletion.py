"""Deletion scheduler — grace-period soft deletion and the sweep that finalizes it.

    Active ──schedule()──▶ PendingDeletion(at) ──sweep() after `at`──▶ Deleted
       ▲                          │
       └──── confirmed login ─────┘

sweep() is a plain coroutine so any recurring trigger (cron via the CLI, or
the in-process loop in core/scheduler.py) can drive it. It is idempotent:
a deleted row is gone, so a second run finds nothing to do.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from accountkit.core.clock import as_utc, utcnow
from accountkit.core.config import get_settings
from accountkit.core.logging import get_logger
from accountkit.models import User

logger = get_logger(__name__)


def is_pending(user: User) -> bool:
    return user.deletion_scheduled_at is not None


def schedule(user: User, now: datetime, grace_days: int) -> datetime:
    """Move the user to PendingDeletion; an existing schedule is kept as-is."""
    if user.deletion_scheduled_at is not None:
        return as_utc(user.deletion_scheduled_at)
    user.deletion_scheduled_at = now + timedelta(days=grace_days)
    return user.deletion_scheduled_at


def cancel(user: User) -> None:
    user.deletion_scheduled_at = None


def days_remaining(user: User, now: datetime) -> int:
    scheduled = as_utc(user.deletion_scheduled_at)
    if scheduled is None:
        return 0
    return max(0, math.ceil((scheduled - now).total_seconds() / 86400))


async def sweep(
    session: AsyncSession,
    now: datetime | None = None,
    grace_days: int | None = None,
) -> int:
    """Hard-delete every user whose grace period is over and return how many.

    A user qualifies when the scheduled time has passed and no login happened
    within the grace window before now (cascades to emails and accounts).
    """
    now = now or utcnow()
    if grace_days is None:
        grace_days = get_settings().deletion_grace_days
    cutoff = now - timedelta(days=grace_days)

    result = await session.execute(
        select(User).where(
            User.deletion_scheduled_at.is_not(None),
            User.deletion_scheduled_at <= now,
            or_(User.last_login_at.is_(None), User.last_login_at <= cutoff),
        )
    )
    users = result.scalars().all()

    try:
        for user in users:
            await session.delete(user)
            logger.info("Deleted user as scheduled", user_id=user.id, username=user.username)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("Deletion sweep complete", deleted=len(users))
    return len(users)
