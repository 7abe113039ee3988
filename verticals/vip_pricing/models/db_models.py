"""SQLAlchemy models for the VIP pricing vertical.

Each model inherits from Base and uses ShopMixin for shop isolation. The
to_dict() method provides the serialisation used by repositories, the
aggregator, and routers.
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, ShopMixin


class AccessLogEntry(ShopMixin, Base):
    """One VIP visit. Immutable once written."""

    __tablename__ = "vip_login_logs"
    __table_args__ = (
        Index("ix_vip_login_logs_shop_created_at", "shop", "created_at"),
    )

    customer_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_tag: Mapped[str] = mapped_column(Text, nullable=False, default="")
    orders_count: Mapped[str] = mapped_column(String(32), nullable=False, default="0")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id) if self.id else None,
            "shop": self.shop,
            "customer_key": self.customer_id,
            "display_name": self.display_name,
            "tag_snapshot": self.customer_tag,
            "orders_count": self.orders_count,
            "timestamp": self.created_at,
        }


class ProvisioningIntent(ShopMixin, Base):
    """Durable record of one segment + discount provisioning run."""

    __tablename__ = "vip_provisioning_intents"

    tag: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    percentage: Mapped[float] = mapped_column(Float, nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="started", index=True)
    segment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    discount_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id) if self.id else None,
            "shop": self.shop,
            "tag": self.tag,
            "title": self.title,
            "percentage": self.percentage,
            "state": self.state,
            "segment_id": self.segment_id,
            "discount_id": self.discount_id,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
