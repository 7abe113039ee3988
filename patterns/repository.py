"""Async repository pattern for database access.

Provides a generic base repository with shop isolation and pagination.
The vertical subclasses it to add domain queries (newest-first access log
reads, unfinished provisioning intents).
"""

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.models.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Generic async repository scoped by shop.

    Subclass and set `model`::

        class AccessLogRepository(BaseRepository[AccessLogEntry]):
            model = AccessLogEntry
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list(
        self,
        shop: str,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[dict], int]:
        """List rows for a shop. Returns (items, total_count)."""
        stmt = select(self.model).where(self.model.shop == shop)
        count_stmt = select(func.count()).select_from(self.model).where(
            self.model.shop == shop
        )

        offset = (page - 1) * limit
        stmt = stmt.order_by(self.model.created_at.desc()).offset(offset).limit(limit)

        result = await self.session.execute(stmt)
        items = [row.to_dict() for row in result.scalars().all()]

        count_result = await self.session.execute(count_stmt)
        total = count_result.scalar() or 0

        return items, total

    async def get(self, item_id: str | UUID, shop: str) -> ModelT | None:
        """Get a single row by ID with shop isolation."""
        if not isinstance(item_id, UUID):
            item_id = UUID(str(item_id))
        stmt = select(self.model).where(
            self.model.id == item_id,
            self.model.shop == shop,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, shop: str, data: dict[str, Any]) -> ModelT:
        """Insert a new row and flush so the id is assigned."""
        item = self.model(shop=shop, **data)
        self.session.add(item)
        await self.session.flush()
        return item

    async def update(
        self, item_id: str | UUID, shop: str, data: dict[str, Any]
    ) -> ModelT | None:
        """Update an existing row. Returns None if not found."""
        item = await self.get(item_id, shop)
        if not item:
            return None

        for key, value in data.items():
            if hasattr(item, key) and key not in ("id", "shop", "created_at"):
                setattr(item, key, value)

        await self.session.flush()
        return item
