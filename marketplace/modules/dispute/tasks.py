"""Celery tasks for dispute SLA enforcement."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from celery_app import celery
from marketplace.database.base import utcnow
from marketplace.database.engine import async_session
from marketplace.models.dispute import Dispute
from marketplace.modules.dispute.constants import TERMINAL_STATUSES
from marketplace.modules.notifications.realtime import (
    RealtimeBatch,
    RealtimeBroadcaster,
)

logger = logging.getLogger(__name__)


async def _expire_overdue_disputes_async(
    session_factory: async_sessionmaker[AsyncSession] = async_session,
    broadcaster: RealtimeBroadcaster | None = None,
    now: datetime | None = None,
) -> dict:
    """Close every active dispute whose deadline has passed.

    Each dispute is expired in its own savepoint so one failure does not
    block the rest of the sweep.
    """
    from marketplace.modules.dispute.moderation_service import ModerationService

    stats = {"checked": 0, "expired": 0, "errors": 0}
    now = now or utcnow()
    batches: list[RealtimeBatch] = []

    async with session_factory() as session:
        result = await session.execute(
            select(Dispute).where(
                Dispute.status.not_in(list(TERMINAL_STATUSES)),
                Dispute.current_due_at.is_not(None),
                Dispute.current_due_at <= now,
            )
        )
        disputes = list(result.scalars().all())
        stats["checked"] = len(disputes)

        for dispute in disputes:
            dispute_id = dispute.id
            batch = RealtimeBatch()
            try:
                async with session.begin_nested():
                    expired = await ModerationService(session, batch).expire(dispute, now)
            except Exception:
                logger.exception("Error expiring dispute %s", dispute_id)
                stats["errors"] += 1
                continue
            if expired:
                stats["expired"] += 1
                batches.append(batch)

        await session.commit()

    owned = broadcaster is None
    broadcaster = broadcaster or RealtimeBroadcaster()
    try:
        for batch in batches:
            await broadcaster.publish(batch)
    finally:
        if owned:
            await broadcaster.close()
    return stats


@celery.task(name="marketplace.modules.dispute.tasks.expire_overdue_disputes")
def expire_overdue_disputes():
    """Move overdue active disputes to closed_expired."""
    stats = asyncio.run(_expire_overdue_disputes_async())
    logger.info("expire_overdue_disputes complete: %s", stats)
    return stats
