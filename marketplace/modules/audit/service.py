"""Audit trail for privileged changes: recording, listing and export."""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from datetime import datetime

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.audit_log import AuditLog
from marketplace.models.user import User

logger = logging.getLogger(__name__)

CSV_HEADER = ["createdAt", "actorEmail", "action", "entityType", "entityId", "before", "after"]


class AuditService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        actor_id: uuid.UUID,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID,
        before: dict | None = None,
        after: dict | None = None,
        metadata: dict | None = None,
    ) -> AuditLog:
        """Write an audit entry in the caller's transaction.

        Not wrapped in a savepoint: if the entry cannot be written the
        privileged change it describes is rolled back with it.
        """
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=jsonable_encoder(before) if before is not None else None,
            after=jsonable_encoder(after) if after is not None else None,
            request_metadata=jsonable_encoder(metadata) if metadata is not None else None,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.info("Audit %s on %s %s by %s", action, entity_type, entity_id, actor_id)
        return entry

    async def list_logs(
        self,
        entity_type: str | None = None,
        action: str | None = None,
        actor_email: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[tuple[AuditLog, str | None]], int]:
        """List audit entries newest first, paired with the actor's email."""
        conditions = []
        if entity_type:
            conditions.append(AuditLog.entity_type == entity_type)
        if action:
            conditions.append(AuditLog.action == action)
        if actor_email:
            actor_ids = select(User.id).where(func.lower(User.email) == actor_email.lower())
            conditions.append(AuditLog.actor_id.in_(actor_ids))
        if date_from is not None:
            conditions.append(AuditLog.created_at >= date_from)
        if date_to is not None:
            conditions.append(AuditLog.created_at <= date_to)

        count_query = select(func.count()).select_from(AuditLog).where(*conditions)
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            select(AuditLog, User.email)
            .outerjoin(User, User.id == AuditLog.actor_id)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return [(row[0], row[1]) for row in result.all()], total


def render_csv(rows: list[tuple[AuditLog, str | None]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for entry, actor_email in rows:
        writer.writerow([
            entry.created_at.isoformat(),
            actor_email or "",
            entry.action,
            entry.entity_type,
            str(entry.entity_id),
            json.dumps(entry.before) if entry.before else "",
            json.dumps(entry.after) if entry.after else "",
        ])
    return buffer.getvalue()
