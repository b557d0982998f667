"""Audit log browser (admin only)."""

from datetime import date, datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.modules.audit.schemas import AuditLogListResponse, AuditLogResponse
from marketplace.modules.audit.service import AuditService, render_csv
from marketplace.modules.auth.auth import AuthenticatedUser, require_admin
from marketplace.schemas.responses import PaginationMeta

router = APIRouter(prefix="/audit-logs", tags=["audit"])

EXPORT_LIMIT = 10_000


def _to_response(entry, actor_email: str | None) -> AuditLogResponse:
    item = AuditLogResponse.model_validate(entry)
    item.actor_email = actor_email
    return item


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    entity_type: str | None = Query(None),
    action: str | None = Query(None),
    actor_email: str | None = Query(None),
    date_from: datetime | None = Query(None, alias="from"),
    date_to: datetime | None = Query(None, alias="to"),
    format: Literal["csv", "json"] | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Browse audit entries; ``format`` turns the result into a file download."""
    svc = AuditService(db)
    filters = dict(
        entity_type=entity_type,
        action=action,
        actor_email=actor_email,
        date_from=date_from,
        date_to=date_to,
    )

    if format is not None:
        rows, _ = await svc.list_logs(**filters, page=1, limit=EXPORT_LIMIT)
        filename = f"audit_logs_{date.today().isoformat()}.{format}"
        headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
        if format == "csv":
            return Response(render_csv(rows), media_type="text/csv", headers=headers)
        items = [_to_response(entry, email).model_dump(mode="json") for entry, email in rows]
        return JSONResponse(jsonable_encoder(items), headers=headers)

    rows, total = await svc.list_logs(**filters, page=page, limit=limit)
    return AuditLogListResponse(
        items=[_to_response(entry, email) for entry, email in rows],
        pagination=PaginationMeta.build(page=page, limit=limit, total=total),
    )
