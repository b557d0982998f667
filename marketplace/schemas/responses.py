"""Shared error envelope and pagination schemas."""

import math

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    field: str | None = None
    message: str


class ErrorBody(BaseModel):
    """Body of ``{"error": {...}}`` returned for every failed request."""

    code: str
    message: str
    details: list[ErrorDetail] | dict = []
    request_id: str = Field(alias="requestId")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    error: ErrorBody


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total_items: int = Field(alias="totalItems")
    total_pages: int = Field(alias="totalPages")

    model_config = {"populate_by_name": True}

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        return cls(
            page=page,
            limit=limit,
            total_items=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        )
