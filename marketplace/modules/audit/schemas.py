"""Pydantic v2 schemas for the audit log browser."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from marketplace.schemas.responses import PaginationMeta


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor_id: uuid.UUID
    actor_email: str | None = None
    action: str
    entity_type: str
    entity_id: uuid.UUID
    before: dict | None = None
    after: dict | None = None
    metadata: dict | None = Field(
        None, validation_alias=AliasChoices("request_metadata", "metadata")
    )
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogResponse]
    pagination: PaginationMeta
