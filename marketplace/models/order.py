"""Order model: a paid checkout with its line items kept as a JSON snapshot."""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"

    reference: Mapped[str | None] = mapped_column(String(100))
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    # [{"product_id", "product_name", "product_image", "unit_price", "quantity"}]
    items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    __table_args__ = (
        Index("ix_orders_buyer_id", "buyer_id"),
    )

    def find_item(
        self, product_id: uuid.UUID | None = None, product_name: str | None = None
    ) -> dict | None:
        """Return the matching line item, falling back to the first one."""
        if not self.items:
            return None
        if product_id is not None:
            for item in self.items:
                if str(item.get("product_id")) == str(product_id):
                    return item
        if product_name:
            for item in self.items:
                if item.get("product_name") == product_name:
                    return item
        return self.items[0]
