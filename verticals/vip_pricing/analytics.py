"""Login Analytics — per-customer summaries over the access log.

Answers the dashboard question: how many VIP customers signed in, how often,
and when the last one did.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from core.errors import TransportError
from core.integrations.commerce import CommerceClient
from core.logging import get_logger
from verticals.vip_pricing.access_log import orders_count_fallback
from verticals.vip_pricing.config import CustomerIdentity

logger = get_logger("vip_pricing.analytics")


class AccessLogReader(Protocol):
    async def newest_first(self, shop: str, limit: int = 500) -> list[dict]: ...


@dataclass
class CustomerSummary:
    key: str
    display_label: str
    latest_timestamp: Optional[datetime]
    tag_snapshot: str
    login_count: int
    orders_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "display_label": self.display_label,
            "latest_timestamp": self.latest_timestamp,
            "tag_snapshot": self.tag_snapshot,
            "login_count": self.login_count,
            "orders_count": self.orders_count,
        }


def aggregate(entries: Iterable[dict]) -> list[CustomerSummary]:
    """Group newest-first log entries by customer key.

    The first (newest) entry for a key supplies the label, timestamp, tag
    snapshot and order count; older entries only add to `login_count`.
    Summaries come back in order of first appearance.
    """
    summaries: dict[str, CustomerSummary] = {}

    for entry in entries:
        key = entry.get("customer_key")
        if not key:
            continue

        summary = summaries.get(key)
        if summary is not None:
            summary.login_count += 1
            continue

        summaries[key] = CustomerSummary(
            key=key,
            display_label=entry.get("display_name") or key,
            latest_timestamp=entry.get("timestamp"),
            tag_snapshot=entry.get("tag_snapshot") or "",
            login_count=1,
            orders_count=orders_count_fallback(None, None, entry.get("orders_count")),
        )

    return list(summaries.values())


@dataclass
class LoginReport:
    summaries: list[CustomerSummary] = field(default_factory=list)
    total_logins: int = 0
    unique_customers: int = 0
    last_login_at: Optional[datetime] = None
    error: Optional[str] = None


class LoginAnalytics:
    """Builds a LoginReport for a shop, optionally refreshing order counts live."""

    def __init__(
        self,
        repository: AccessLogReader,
        client: Optional[CommerceClient] = None,
        identity: CustomerIdentity = CustomerIdentity.CUSTOMER_ID,
        refresh: bool = True,
        limit: int = 500,
    ):
        self.repository = repository
        self.client = client
        self.identity = identity
        self.refresh = refresh
        self.limit = limit

    async def report(self, shop: str, limit: Optional[int] = None) -> LoginReport:
        try:
            entries = await self.repository.newest_first(shop, limit=limit or self.limit)
        except Exception:
            logger.error("Failed to read access log", exc_info=True)
            return LoginReport(error="Failed to load login analytics")

        summaries = aggregate(entries)
        if self._can_refresh():
            for summary in summaries:
                summary.orders_count = await self._live_orders_count(summary)

        return LoginReport(
            summaries=summaries,
            total_logins=len(entries),
            unique_customers=len(summaries),
            last_login_at=entries[0].get("timestamp") if entries else None,
        )

    def _can_refresh(self) -> bool:
        # display names are not unique, so only stable ids are looked up
        return (
            self.refresh
            and self.client is not None
            and self.identity is CustomerIdentity.CUSTOMER_ID
        )

    async def _live_orders_count(self, summary: CustomerSummary) -> int:
        try:
            customer = await self.client.get_customer(summary.key)
        except TransportError as exc:
            logger.warning("Order count refresh failed", customer_key=summary.key, error=exc.message)
            return summary.orders_count

        if customer is None:
            return summary.orders_count
        return orders_count_fallback(
            customer.order_count_direct,
            customer.order_count_via_connection,
            summary.orders_count,
        )
