"""DisputeMessage model: append-only communication thread of a dispute."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, JSONType, UUIDPrimaryKeyMixin, utcnow, value_enum
from marketplace.models.enums import MessageAuthorRole

if TYPE_CHECKING:
    from marketplace.models.dispute import Dispute


class DisputeMessage(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "dispute_messages"

    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False
    )
    author_role: Mapped[MessageAuthorRole] = mapped_column(
        value_enum(MessageAuthorRole, "messageauthorrole"), nullable=False
    )
    # None for system-generated messages
    author_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    text: Mapped[str | None] = mapped_column(Text)
    # [{"original_name", "mime_type", "size", "url"}]
    attachments: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    dispute: Mapped[Dispute] = relationship(
        "Dispute", back_populates="messages", lazy="noload"
    )

    __table_args__ = (
        Index("ix_dispute_messages_dispute_id", "dispute_id", "created_at"),
    )
