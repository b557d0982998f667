from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class DisputeReason(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "dispute_reasons"

    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )

    __table_args__ = (
        Index("ix_dispute_reasons_category", "category", "is_active"),
    )
