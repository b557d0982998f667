from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from marketplace.models.shop import Shop


class Product(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "products"

    shop_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    images: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    shop: Mapped[Shop] = relationship("Shop", lazy="noload")

    __table_args__ = (
        Index("ix_products_shop_id", "shop_id"),
    )

    @property
    def primary_image(self) -> str | None:
        return self.images[0] if self.images else None
