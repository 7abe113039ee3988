"""VIP pricing repositories — async database access scoped by shop.

AccessLogRepository appends and reads access log entries; IntentRepository
is the durable provisioning intent log swept by reconciliation.
"""

from datetime import datetime
from typing import Any

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from patterns.repository import BaseRepository
from patterns.workflow_states import ProvisioningState, UNFINISHED_STATES
from verticals.vip_pricing.models.db_models import AccessLogEntry, ProvisioningIntent


# ---------------------------------------------------------------------------
# Access log
# ---------------------------------------------------------------------------

class AccessLogRepository(BaseRepository[AccessLogEntry]):
    """Append-only access log. Entries are never updated or deleted."""

    model = AccessLogEntry

    async def record(
        self,
        shop: str,
        customer_key: str,
        tag_snapshot: str,
        orders_count: str,
        display_name: str | None = None,
    ) -> AccessLogEntry:
        return await self.create(
            shop,
            {
                "customer_id": customer_key,
                "display_name": display_name,
                "customer_tag": tag_snapshot,
                "orders_count": orders_count,
            },
        )

    async def newest_first(self, shop: str, limit: int = 500) -> list[dict]:
        """Entries for `shop` ordered by write time, newest first."""
        items, _ = await self.list(shop, page=1, limit=limit)
        return items


# ---------------------------------------------------------------------------
# Provisioning intents
# ---------------------------------------------------------------------------

class IntentRepository(BaseRepository[ProvisioningIntent]):
    """Provisioning intent log.

    Every state change is committed immediately so the record survives a crash
    between two remote calls.
    """

    model = ProvisioningIntent

    async def open(self, shop: str, tag: str, title: str, percentage: float) -> str:
        intent = await self.create(
            shop,
            {
                "tag": tag,
                "title": title,
                "percentage": percentage,
                "state": ProvisioningState.STARTED.value,
            },
        )
        await self.session.commit()
        return str(intent.id)

    async def advance(
        self,
        intent_id: str,
        shop: str,
        state: ProvisioningState,
        **fields: Any,
    ) -> None:
        await self.update(intent_id, shop, {"state": state.value, **fields})
        await self.session.commit()

    async def list_unfinished(
        self, shop: str, created_before: datetime | None = None
    ) -> list[dict]:
        """Intents not yet in a terminal state, oldest first."""
        stmt = select(ProvisioningIntent).where(
            ProvisioningIntent.shop == shop,
            ProvisioningIntent.state.in_([s.value for s in UNFINISHED_STATES]),
        )
        if created_before is not None:
            stmt = stmt.where(ProvisioningIntent.created_at < created_before)
        stmt = stmt.order_by(ProvisioningIntent.created_at)
        result = await self.session.execute(stmt)
        return [row.to_dict() for row in result.scalars().all()]


# ---------------------------------------------------------------------------
# FastAPI dependency factories
# ---------------------------------------------------------------------------

def get_access_log_repository(
    session: AsyncSession = Depends(get_session),
) -> AccessLogRepository:
    return AccessLogRepository(session)


def get_intent_repository(
    session: AsyncSession = Depends(get_session),
) -> IntentRepository:
    return IntentRepository(session)
