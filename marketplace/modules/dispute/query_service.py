"""Admin dashboard listing of disputes."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.database.base import utcnow
from marketplace.exceptions import ValidationException
from marketplace.models.dispute import Dispute
from marketplace.models.enums import DisputeContext, DisputeStatus
from marketplace.models.user import User
from marketplace.modules.dispute.display import DisplayResolver
from marketplace.modules.dispute.schemas import AdminDisputeItem, DisputeResponse
from marketplace.modules.dispute.state_machine import as_aware, is_terminal

logger = logging.getLogger(__name__)

UNASSIGNED = "unassigned"


def _email_prefix(prefix: str):
    """Ids of users whose email starts with ``prefix``, case-insensitively."""
    return select(User.id).where(
        func.lower(User.email).startswith(prefix.strip().lower(), autoescape=True)
    )


class DisputeQueryService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_admin(
        self,
        context: DisputeContext | None = None,
        status: DisputeStatus | None = None,
        reference: str | None = None,
        buyer_email: str | None = None,
        seller_email: str | None = None,
        reason_code: str | None = None,
        moderator: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        due_within_24h: bool = False,
        overdue: bool = False,
        page: int = 1,
        limit: int = 20,
        now: datetime | None = None,
    ) -> tuple[list[AdminDisputeItem], int]:
        """Filter, paginate and decorate disputes for moderation dashboards.

        ``due_within_24h`` and ``overdue`` are evaluated against ``now`` at
        query time; deadlines are never stored as flags.
        """
        now = now or utcnow()
        due_soon_until = now + timedelta(hours=settings.dispute_due_soon_hours)

        conditions = []
        if context is not None:
            conditions.append(Dispute.context == context)
        if status is not None:
            conditions.append(Dispute.status == status)
        if reference:
            conditions.append(Dispute.reference.contains(reference.strip(), autoescape=True))
        if buyer_email and buyer_email.strip():
            conditions.append(Dispute.buyer_id.in_(_email_prefix(buyer_email)))
        if seller_email and seller_email.strip():
            conditions.append(Dispute.seller_id.in_(_email_prefix(seller_email)))
        if reason_code:
            conditions.append(Dispute.reason_code == reason_code)
        if moderator:
            if moderator == UNASSIGNED:
                conditions.append(Dispute.moderator_assigned_to.is_(None))
            else:
                try:
                    moderator_id = uuid.UUID(moderator)
                except ValueError as exc:
                    raise ValidationException(
                        "moderator must be a user id or 'unassigned'",
                        details=[{"field": "moderator", "message": moderator}],
                    ) from exc
                conditions.append(Dispute.moderator_assigned_to == moderator_id)
        if created_from is not None:
            conditions.append(Dispute.created_at >= created_from)
        if created_to is not None:
            conditions.append(Dispute.created_at <= created_to)
        if due_within_24h:
            conditions.append(Dispute.current_due_at.is_not(None))
            conditions.append(Dispute.current_due_at > now)
            conditions.append(Dispute.current_due_at <= due_soon_until)
        if overdue:
            conditions.append(Dispute.current_due_at.is_not(None))
            conditions.append(Dispute.current_due_at <= now)

        count_query = select(func.count()).select_from(Dispute).where(*conditions)
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            select(Dispute)
            .where(*conditions)
            .order_by(Dispute.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        disputes = list((await self.db.execute(query)).scalars().all())
        users = await DisplayResolver(self.db).users_for(disputes)

        items = []
        for dispute in disputes:
            due = as_aware(dispute.current_due_at)
            active = due is not None and not is_terminal(dispute.status)
            items.append(
                AdminDisputeItem(
                    **DisputeResponse.model_validate(dispute).model_dump(),
                    buyer_display=users.get(dispute.buyer_id),
                    seller_display=users.get(dispute.seller_id),
                    moderator_display=users.get(dispute.moderator_assigned_to),
                    is_overdue=active and due <= now,
                    is_due_soon=active and now < due <= due_soon_until,
                )
            )
        return items, total
