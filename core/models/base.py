"""Base model and mixins for all SQLAlchemy models.

Provides:
- Base: Declarative base class for all models
- ShopMixin: Adds shop, UUID primary key, and the write timestamp

Every model is scoped to the shop it was recorded for. The shop column is
indexed for per-shop queries.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all VIP pricing models."""
    pass


class ShopMixin:
    """Mixin providing shop isolation and the standard audit column.

    Adds:
    - id: UUID primary key (auto-generated; native uuid on PostgreSQL)
    - shop: Indexed shop domain
    - created_at: Timestamp set by the database on insert
    """

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    shop: Mapped[str] = mapped_column(
        String(255),
        index=True,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
