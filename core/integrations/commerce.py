"""Commerce platform capability contract.

The VIP pricing core never talks HTTP directly. It consumes the small set of
operations below and receives either a payload or a non-empty list of
field-level user errors. `ShopifyAdminAdapter` is the production
implementation; tests substitute an in-memory fake.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Optional, Protocol, TypeVar

T = TypeVar("T")

# User error code returned when a compare-and-swap write sees a newer version.
STALE_OBJECT = "STALE_OBJECT"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class UserError:
    """A field-level error reported by the platform."""
    message: str
    field: list[str] = field(default_factory=list)
    code: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UserError":
        raw_field = payload.get("field") or []
        if isinstance(raw_field, str):
            raw_field = [raw_field]
        return cls(
            message=str(payload.get("message", "")),
            field=list(raw_field),
            code=payload.get("code"),
        )


@dataclass
class RemoteResult(Generic[T]):
    """Payload on success, user errors on failure."""
    payload: T | None = None
    errors: list[UserError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and self.payload is not None

    @property
    def first_error(self) -> str:
        if self.errors:
            return self.errors[0].message
        return "Unknown remote error"


@dataclass
class SegmentResult:
    segment_id: str
    name: str


@dataclass
class DiscountResult:
    discount_id: str
    title: str
    status: str = ""


@dataclass
class BlobRecord:
    """A stored JSON blob and the version token that guards writes to it."""
    value: str | None
    version: str | None = None


@dataclass
class CustomerRecord:
    """Canonical customer view used by classification and analytics."""
    customer_id: str
    display_name: str = ""
    tags: list[str] = field(default_factory=list)
    order_count_direct: int | None = None
    order_count_via_connection: int | None = None


# ---------------------------------------------------------------------------
# Capability contract
# ---------------------------------------------------------------------------

class CommerceClient(Protocol):
    """Operations the core needs from the commerce platform."""

    async def get_shop_id(self) -> str: ...

    async def create_segment(self, name: str, query: str) -> RemoteResult[SegmentResult]: ...

    async def delete_segment(self, segment_id: str) -> list[UserError]: ...

    async def create_automatic_percentage_discount(
        self,
        title: str,
        percentage: float,
        segment_id: str,
        starts_at: datetime,
    ) -> RemoteResult[DiscountResult]: ...

    async def delete_automatic_discount(self, discount_id: str) -> list[UserError]: ...

    async def get_blob(self, owner_id: str, namespace: str, key: str) -> Optional[BlobRecord]: ...

    async def set_blob(
        self,
        owner_id: str,
        namespace: str,
        key: str,
        json_value: str,
        compare_version: str | None = None,
        create_only: bool = False,
    ) -> list[UserError]:
        """Write a blob. `compare_version` guards an existing blob and
        `create_only` rejects the write if any blob already exists. Both
        conflicts are reported as a `STALE_OBJECT` user error."""

    async def get_customer(self, customer_ref: str) -> Optional[CustomerRecord]: ...
