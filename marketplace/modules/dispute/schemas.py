"""Pydantic v2 schemas for the dispute API.

Request models accept both snake_case names and the camelCase / Spanish
names used by the marketplace frontend (``motivoClave``, ``estado``, ...).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from marketplace.models.enums import (
    DisputeContext,
    DisputeParty,
    DisputeStatus,
    MessageAuthorRole,
    ProposalDecision,
    ProposalPartyStatus,
    ReasonCategory,
)
from marketplace.schemas.responses import PaginationMeta


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class DisputeCreate(BaseModel):
    context: DisputeContext = DisputeContext.ORDER
    order_id: uuid.UUID | None = Field(None, validation_alias=_alias("order_id", "orderId"))
    campaign_id: uuid.UUID | None = Field(
        None, validation_alias=_alias("campaign_id", "campaignId")
    )
    application_id: uuid.UUID | None = Field(
        None, validation_alias=_alias("application_id", "applicationId")
    )
    product_id: uuid.UUID | None = Field(None, validation_alias=_alias("product_id", "productId"))
    product_name: str | None = Field(
        None, max_length=255, validation_alias=_alias("product_name", "productName")
    )
    reference: str | None = Field(None, max_length=100)
    shop_name: str | None = Field(
        None, max_length=255, validation_alias=_alias("shop_name", "shopName")
    )
    campaign_name: str | None = Field(
        None, max_length=255, validation_alias=_alias("campaign_name", "campaignName")
    )
    reason_code: str = Field(
        ..., min_length=1, max_length=100, validation_alias=_alias("reason_code", "motivoClave")
    )
    description: str = Field(
        ..., min_length=1, validation_alias=_alias("description", "descripcion")
    )

    @model_validator(mode="after")
    def _require_subject(self) -> DisputeCreate:
        required = {
            DisputeContext.ORDER: ("order_id", self.order_id),
            DisputeContext.CAMPAIGN: ("campaign_id", self.campaign_id),
            DisputeContext.APPLICATION: ("application_id", self.application_id),
        }
        name, value = required[self.context]
        if value is None:
            raise ValueError(f"{name} is required for {self.context.value} disputes")
        if not self.description.strip():
            raise ValueError("description must not be blank")
        return self

    @property
    def subject_id(self) -> uuid.UUID:
        return {
            DisputeContext.ORDER: self.order_id,
            DisputeContext.CAMPAIGN: self.campaign_id,
            DisputeContext.APPLICATION: self.application_id,
        }[self.context]


class MessageCreate(BaseModel):
    text: str = Field("", max_length=5000)


class RequestInfoRequest(BaseModel):
    to: DisputeParty
    text: str | None = Field(None, max_length=5000)


class ProposalRequest(BaseModel):
    text: str | None = Field(None, max_length=5000)


class ProposalDecisionRequest(BaseModel):
    decision: ProposalDecision
    # Required when a moderator records the decision on behalf of a party
    party: DisputeParty | None = None


class EscalateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class AdminStatusUpdate(BaseModel):
    status: DisputeStatus = Field(..., validation_alias=_alias("status", "estado"))
    closure_type: str | None = Field(
        None, max_length=255, validation_alias=_alias("closure_type", "cierreTipo")
    )
    comment: str | None = Field(
        None, max_length=5000, validation_alias=_alias("comment", "comentario")
    )


class ModeratorAssignment(BaseModel):
    moderator_id: uuid.UUID | None = Field(
        None, validation_alias=_alias("moderator_id", "moderatorId")
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ReasonResponse(BaseModel):
    code: str
    title: str
    category: ReasonCategory


class AttachmentResponse(BaseModel):
    original_name: str
    mime_type: str
    size: int
    url: str


class DisputeMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    dispute_id: uuid.UUID
    author_role: MessageAuthorRole
    author_id: uuid.UUID | None = None
    text: str | None = None
    attachments: list[AttachmentResponse] = Field(default_factory=list)
    created_at: datetime


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    context: DisputeContext
    order_id: uuid.UUID | None = None
    campaign_id: uuid.UUID | None = None
    application_id: uuid.UUID | None = None
    reference: str | None = None
    product_id: uuid.UUID | None = None
    product_name: str | None = None
    shop_id: uuid.UUID | None = None
    shop_name: str | None = None
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    reason_code: str
    initial_description: str
    status: DisputeStatus
    sla_hours: int
    current_due_at: datetime | None = None
    closure_type: str | None = None
    proposal_buyer_status: ProposalPartyStatus | None = None
    proposal_seller_status: ProposalPartyStatus | None = None
    moderator_assigned_to: uuid.UUID | None = None
    moderator_key: str | None = None
    created_at: datetime
    updated_at: datetime


class DisputeListResponse(BaseModel):
    items: list[DisputeResponse]
    total: int
    limit: int
    offset: int


class UserDisplay(BaseModel):
    id: uuid.UUID
    name: str
    email: str | None = None
    avatar_url: str | None = None


class ShopDisplay(BaseModel):
    id: uuid.UUID | None = None
    name: str | None = None
    image_url: str | None = None


class ProductDisplay(BaseModel):
    id: uuid.UUID | None = None
    name: str | None = None
    image_url: str | None = None
    price: Decimal | None = None


class CampaignDisplay(BaseModel):
    id: uuid.UUID
    name: str
    image_url: str | None = None


class DisputeDetailResponse(DisputeResponse):
    messages: list[DisputeMessageResponse] = Field(default_factory=list)
    buyer_display: UserDisplay | None = None
    seller_display: UserDisplay | None = None
    moderator_display: UserDisplay | None = None
    shop_display: ShopDisplay | None = None
    product_display: ProductDisplay | None = None
    campaign_display: CampaignDisplay | None = None


class DisputeActionResponse(BaseModel):
    """Result of a state-changing action on a dispute."""

    dispute: DisputeResponse
    message: DisputeMessageResponse | None = None
    changed: bool = True


class AdminDisputeItem(DisputeResponse):
    buyer_display: UserDisplay | None = None
    seller_display: UserDisplay | None = None
    moderator_display: UserDisplay | None = None
    is_overdue: bool = False
    is_due_soon: bool = False


class AdminDisputeListResponse(BaseModel):
    items: list[AdminDisputeItem]
    pagination: PaginationMeta
