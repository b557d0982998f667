# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from marketplace.models.audit_log import AuditLog
from marketplace.models.campaign import Campaign
from marketplace.models.campaign_application import CampaignApplication
from marketplace.models.dispute import Dispute
from marketplace.models.dispute_message import DisputeMessage
from marketplace.models.dispute_reason import DisputeReason
from marketplace.models.enums import (
    DisputeContext,
    DisputeParty,
    DisputeStatus,
    MessageAuthorRole,
    ProposalDecision,
    ProposalPartyStatus,
    ReasonCategory,
    UserRole,
)
from marketplace.models.notification import Notification
from marketplace.models.order import Order
from marketplace.models.product import Product
from marketplace.models.shop import Shop
from marketplace.models.user import User

__all__ = [
    "AuditLog",
    "Campaign",
    "CampaignApplication",
    "Dispute",
    "DisputeContext",
    "DisputeMessage",
    "DisputeParty",
    "DisputeReason",
    "DisputeStatus",
    "MessageAuthorRole",
    "Notification",
    "Order",
    "Product",
    "ProposalDecision",
    "ProposalPartyStatus",
    "ReasonCategory",
    "Shop",
    "User",
    "UserRole",
]
