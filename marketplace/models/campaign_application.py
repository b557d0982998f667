from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from marketplace.models.campaign import Campaign


class CampaignApplication(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "campaign_applications"

    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False
    )
    influencer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    campaign: Mapped[Campaign] = relationship("Campaign", lazy="noload")

    __table_args__ = (
        Index("ix_campaign_applications_campaign_id", "campaign_id"),
    )
