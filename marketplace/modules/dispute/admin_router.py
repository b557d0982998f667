"""Moderator / admin dispute management endpoints."""

import uuid
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.models.enums import DisputeContext, DisputeStatus
from marketplace.modules.auth.auth import AuthenticatedUser, require_staff
from marketplace.modules.dispute.moderation_service import ModerationService
from marketplace.modules.dispute.query_service import DisputeQueryService
from marketplace.modules.dispute.router import action_response, client_ip, commit_and_publish
from marketplace.modules.dispute.schemas import (
    AdminDisputeListResponse,
    AdminStatusUpdate,
    DisputeActionResponse,
    ModeratorAssignment,
)
from marketplace.modules.notifications.realtime import RealtimeBroadcaster, get_broadcaster
from marketplace.ratelimit import limiter
from marketplace.schemas.responses import PaginationMeta

admin_router = APIRouter(prefix="/disputes/admin", tags=["disputes-admin"])


@admin_router.get("", response_model=AdminDisputeListResponse)
async def list_disputes_admin(
    context: DisputeContext | None = Query(None),
    status: DisputeStatus | None = Query(None),
    reference: str | None = Query(None),
    buyer_email: str | None = Query(None),
    seller_email: str | None = Query(None),
    reason_code: str | None = Query(None),
    moderator: str | None = Query(None),
    created_from: datetime | None = Query(None),
    created_to: datetime | None = Query(None),
    due_within_24h: bool = Query(False),
    overdue: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: AuthenticatedUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Dashboard listing with derived deadline filters."""
    items, total = await DisputeQueryService(db).list_admin(
        context=context,
        status=status,
        reference=reference,
        buyer_email=buyer_email,
        seller_email=seller_email,
        reason_code=reason_code,
        moderator=moderator,
        created_from=created_from,
        created_to=created_to,
        due_within_24h=due_within_24h,
        overdue=overdue,
        page=page,
        limit=limit,
    )
    return AdminDisputeListResponse(
        items=items,
        pagination=PaginationMeta.build(page=page, limit=limit, total=total),
    )


@admin_router.patch("/{dispute_id}/state", response_model=DisputeActionResponse)
@limiter.limit("30/minute")
async def update_dispute_state(
    request: Request,
    dispute_id: uuid.UUID,
    body: AdminStatusUpdate,
    background_tasks: BackgroundTasks,
    user: AuthenticatedUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    """Override the status of a dispute (audited)."""
    svc = ModerationService(db)
    dispute, message = await svc.override_status(
        dispute_id,
        user,
        body.status,
        closure_type=body.closure_type,
        comment=body.comment,
        ip=client_ip(request),
    )
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return action_response(dispute, message)


@admin_router.patch("/{dispute_id}/moderator", response_model=DisputeActionResponse)
@limiter.limit("30/minute")
async def update_dispute_moderator(
    request: Request,
    dispute_id: uuid.UUID,
    body: ModeratorAssignment,
    background_tasks: BackgroundTasks,
    user: AuthenticatedUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    """Assign a moderator, or release the dispute with ``null`` (audited)."""
    svc = ModerationService(db)
    dispute = await svc.assign_moderator(dispute_id, user, body.moderator_id, ip=client_ip(request))
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return action_response(dispute)
