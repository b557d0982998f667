"""Dispute model: buyer/seller disputes over orders, campaigns and applications."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, value_enum
from marketplace.models.enums import DisputeContext, DisputeStatus, ProposalPartyStatus

if TYPE_CHECKING:
    from marketplace.models.dispute_message import DisputeMessage
    from marketplace.models.user import User

IMMUTABLE_FIELDS = ("buyer_id", "seller_id", "reason_code", "initial_description")

_proposal_status_type = value_enum(ProposalPartyStatus, "proposalpartystatus")


class Dispute(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "disputes"

    context: Mapped[DisputeContext] = mapped_column(
        value_enum(DisputeContext, "disputecontext"),
        nullable=False,
        default=DisputeContext.ORDER,
        server_default="order",
    )

    # Subject (exactly one is set, matching the context)
    order_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL")
    )
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="SET NULL")
    )
    application_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("campaign_applications.id", ondelete="SET NULL")
    )
    subject_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100))

    # Display linkage
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="SET NULL")
    )
    product_name: Mapped[str | None] = mapped_column(String(255))
    shop_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("shops.id", ondelete="SET NULL")
    )
    shop_name: Mapped[str | None] = mapped_column(String(255))

    # Parties. For campaign/application disputes buyer_id holds the influencer.
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    reason_code: Mapped[str] = mapped_column(String(100), nullable=False)
    initial_description: Mapped[str] = mapped_column(Text, nullable=False)

    # State machine
    status: Mapped[DisputeStatus] = mapped_column(
        value_enum(DisputeStatus, "disputestatus"),
        nullable=False,
        default=DisputeStatus.OPEN,
        server_default="open",
    )
    sla_hours: Mapped[int] = mapped_column(
        Integer, nullable=False, default=72, server_default="72"
    )
    current_due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closure_type: Mapped[str | None] = mapped_column(String(255))
    proposal_buyer_status: Mapped[ProposalPartyStatus | None] = mapped_column(_proposal_status_type)
    proposal_seller_status: Mapped[ProposalPartyStatus | None] = mapped_column(_proposal_status_type)

    # Moderation
    moderator_assigned_to: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    moderator_key: Mapped[str | None] = mapped_column(String(255))

    # Optimistic locking
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    buyer: Mapped[User] = relationship("User", foreign_keys=[buyer_id], lazy="noload")
    seller: Mapped[User] = relationship("User", foreign_keys=[seller_id], lazy="noload")
    moderator: Mapped[User | None] = relationship(
        "User", foreign_keys=[moderator_assigned_to], lazy="noload"
    )
    messages: Mapped[list[DisputeMessage]] = relationship(
        "DisputeMessage",
        back_populates="dispute",
        lazy="noload",
        cascade="all, delete-orphan",
        order_by="DisputeMessage.created_at",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint(
            "context", "buyer_id", "seller_id", "subject_ref", name="uq_disputes_subject"
        ),
        Index("ix_disputes_buyer_id", "buyer_id"),
        Index("ix_disputes_seller_id", "seller_id"),
        Index("ix_disputes_status", "status"),
        Index("ix_disputes_current_due_at", "current_due_at"),
        Index("ix_disputes_moderator_assigned_to", "moderator_assigned_to"),
    )

    @validates(*IMMUTABLE_FIELDS)
    def _validate_immutable(self, key: str, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(f"Dispute.{key} cannot change once set")
        return value

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} context={self.context} status={self.status}>"
