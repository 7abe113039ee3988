"""
Shopify Admin GraphQL adapter.

Implements the CommerceClient contract for one shop: customer segments,
automatic basic discounts, shop metafields used as versioned JSON blobs, and
customer lookups. User errors come back as data; HTTP and top-level GraphQL
errors raise TransportError.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from core.errors import TransportError
from core.integrations.adapter_base import AdapterBase, GraphQLRequest, ShopCredentials
from core.integrations.commerce import (
    BlobRecord,
    CustomerRecord,
    DiscountResult,
    RemoteResult,
    SegmentResult,
    UserError,
)
from core.integrations.normalizer import DataNormalizer, SHOPIFY_CUSTOMER_MAPPING
from core.logging import get_logger

logger = get_logger("vip_pricing.shopify")


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

SHOP_ID_QUERY = """
query ShopId {
    shop {
        id
    }
}
"""

SEGMENT_CREATE = """
mutation CreateSegment($name: String!, $query: String!) {
    segmentCreate(name: $name, query: $query) {
        segment {
            id
            name
        }
        userErrors {
            field
            message
        }
    }
}
"""

SEGMENT_DELETE = """
mutation DeleteSegment($id: ID!) {
    segmentDelete(id: $id) {
        deletedSegmentId
        userErrors {
            field
            message
        }
    }
}
"""

DISCOUNT_CREATE = """
mutation CreateAutomaticDiscount($discount: DiscountAutomaticBasicInput!) {
    discountAutomaticBasicCreate(automaticBasicDiscount: $discount) {
        automaticDiscountNode {
            id
            automaticDiscount {
                ... on DiscountAutomaticBasic {
                    title
                    status
                }
            }
        }
        userErrors {
            field
            message
        }
    }
}
"""

DISCOUNT_DELETE = """
mutation DeleteAutomaticDiscount($id: ID!) {
    discountAutomaticDelete(id: $id) {
        deletedAutomaticDiscountId
        userErrors {
            field
            message
        }
    }
}
"""

METAFIELD_READ = """
query ReadMetafield($ownerId: ID!, $namespace: String!, $key: String!) {
    node(id: $ownerId) {
        ... on HasMetafields {
            metafield(namespace: $namespace, key: $key) {
                value
                compareDigest
            }
        }
    }
}
"""

METAFIELD_WRITE = """
mutation WriteMetafield($metafields: [MetafieldsSetInput!]!) {
    metafieldsSet(metafields: $metafields) {
        metafields {
            key
            compareDigest
        }
        userErrors {
            field
            message
            code
        }
    }
}
"""

CUSTOMER_QUERY = """
query CustomerTags($id: ID!) {
    customer(id: $id) {
        id
        displayName
        tags
        numberOfOrders
        orders(first: 250) {
            nodes {
                id
            }
        }
    }
}
"""

CUSTOMER_GID_PREFIX = "gid://shopify/Customer/"


def to_customer_gid(customer_ref: str) -> str:
    """Accept either a numeric customer id or a full GID."""
    if customer_ref.startswith("gid://"):
        return customer_ref
    return f"{CUSTOMER_GID_PREFIX}{customer_ref}"


def _user_errors(payload: dict[str, Any] | None) -> list[UserError]:
    return [UserError.from_payload(e) for e in (payload or {}).get("userErrors") or []]


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class ShopifyAdminAdapter(AdapterBase):
    """CommerceClient bound to a single shop."""

    name = "shopify"

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: str = "2025-01",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(transport=transport)
        self.shop = shop.replace("https://", "").replace("http://", "").rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._shop_id: str | None = None
        self._normalizer = DataNormalizer()
        self._normalizer.register_mapping(SHOPIFY_CUSTOMER_MAPPING)
        self.set_credentials(ShopCredentials(shop=self.shop, access_token=access_token))

    def endpoint_for(self, shop: str) -> str:
        return f"https://{shop}/admin/api/{self.api_version}/graphql.json"

    async def _run(self, query: str, variables: dict[str, Any], operation_name: str) -> dict[str, Any]:
        req = GraphQLRequest(
            query=query,
            variables=variables,
            operation_name=operation_name,
            timeout=self.timeout,
            idempotent=not query.lstrip().startswith("mutation"),
        )
        resp = await self.execute(req, self.shop)
        if resp.error or resp.errors:
            detail = resp.error or "; ".join(str(e.get("message", e)) for e in resp.errors)
            logger.error(
                "Shopify request failed",
                operation=operation_name,
                status_code=resp.status_code,
                error=detail,
            )
            raise TransportError(
                f"{operation_name} failed",
                details={"status_code": resp.status_code, "error": detail},
            )
        return resp.data

    # --- Shop ---

    async def get_shop_id(self) -> str:
        if self._shop_id is None:
            data = await self._run(SHOP_ID_QUERY, {}, "ShopId")
            self._shop_id = data["shop"]["id"]
        return self._shop_id

    # --- Segments ---

    async def create_segment(self, name: str, query: str) -> RemoteResult[SegmentResult]:
        data = await self._run(SEGMENT_CREATE, {"name": name, "query": query}, "CreateSegment")
        payload = data.get("segmentCreate") or {}
        errors = _user_errors(payload)
        if errors:
            return RemoteResult(errors=errors)
        segment = payload.get("segment") or {}
        return RemoteResult(payload=SegmentResult(segment_id=segment["id"], name=segment.get("name", name)))

    async def delete_segment(self, segment_id: str) -> list[UserError]:
        data = await self._run(SEGMENT_DELETE, {"id": segment_id}, "DeleteSegment")
        return _user_errors(data.get("segmentDelete"))

    # --- Discounts ---

    async def create_automatic_percentage_discount(
        self,
        title: str,
        percentage: float,
        segment_id: str,
        starts_at: datetime,
    ) -> RemoteResult[DiscountResult]:
        if starts_at.tzinfo is None:
            starts_at = starts_at.replace(tzinfo=timezone.utc)
        variables = {
            "discount": {
                "title": title,
                "startsAt": starts_at.isoformat(),
                "context": {"customerSegments": {"add": [segment_id]}},
                "customerGets": {
                    "value": {"percentage": percentage},
                    "items": {"all": True},
                },
            }
        }
        data = await self._run(DISCOUNT_CREATE, variables, "CreateAutomaticDiscount")
        payload = data.get("discountAutomaticBasicCreate") or {}
        errors = _user_errors(payload)
        if errors:
            return RemoteResult(errors=errors)

        node = payload.get("automaticDiscountNode") or {}
        discount = node.get("automaticDiscount") or {}
        return RemoteResult(
            payload=DiscountResult(
                discount_id=node["id"],
                title=discount.get("title", title),
                status=discount.get("status", ""),
            )
        )

    async def delete_automatic_discount(self, discount_id: str) -> list[UserError]:
        data = await self._run(DISCOUNT_DELETE, {"id": discount_id}, "DeleteAutomaticDiscount")
        return _user_errors(data.get("discountAutomaticDelete"))

    # --- Metafield blobs ---

    async def get_blob(self, owner_id: str, namespace: str, key: str) -> Optional[BlobRecord]:
        data = await self._run(
            METAFIELD_READ,
            {"ownerId": owner_id, "namespace": namespace, "key": key},
            "ReadMetafield",
        )
        metafield = (data.get("node") or {}).get("metafield")
        if not metafield:
            return None
        return BlobRecord(value=metafield.get("value"), version=metafield.get("compareDigest"))

    async def set_blob(
        self,
        owner_id: str,
        namespace: str,
        key: str,
        json_value: str,
        compare_version: str | None = None,
        create_only: bool = False,
    ) -> list[UserError]:
        metafield: dict[str, Any] = {
            "ownerId": owner_id,
            "namespace": namespace,
            "key": key,
            "type": "json",
            "value": json_value,
        }
        if create_only:
            # a null digest means the metafield must not exist yet
            metafield["compareDigest"] = None
        elif compare_version is not None:
            metafield["compareDigest"] = compare_version
        data = await self._run(METAFIELD_WRITE, {"metafields": [metafield]}, "WriteMetafield")
        return _user_errors(data.get("metafieldsSet"))

    # --- Customers ---

    async def get_customer(self, customer_ref: str) -> Optional[CustomerRecord]:
        data = await self._run(CUSTOMER_QUERY, {"id": to_customer_gid(customer_ref)}, "CustomerTags")
        raw = data.get("customer")
        if not raw:
            return None
        return self._normalizer.normalize_customer(self.name, raw)
