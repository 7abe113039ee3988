"""
VIP Pricing Integrations — Commerce Platform Access.

Provides the remote resource layer consumed by the pricing core:
- CommerceClient: capability contract and result types
- AdapterBase: GraphQL-over-HTTP adapter with rate limiting, circuit breaker, retries
- ShopifyAdminAdapter: Shopify Admin API implementation
- DataNormalizer: Vendor → canonical customer mapping
"""
from core.integrations.adapter_base import (
    AdapterBase,
    GraphQLRequest,
    GraphQLResponse,
    IntegrationHealth,
    RateLimiter,
    ShopCredentials,
)
from core.integrations.commerce import (
    STALE_OBJECT,
    BlobRecord,
    CommerceClient,
    CustomerRecord,
    DiscountResult,
    RemoteResult,
    SegmentResult,
    UserError,
)
from core.integrations.normalizer import (
    DataNormalizer,
    FieldMapping,
    SchemaMapping,
    SHOPIFY_CUSTOMER_MAPPING,
    TRANSFORMS,
)
from core.integrations.shopify import ShopifyAdminAdapter, to_customer_gid

__all__ = [
    # Adapter
    "AdapterBase",
    "GraphQLRequest",
    "GraphQLResponse",
    "IntegrationHealth",
    "RateLimiter",
    "ShopCredentials",
    # Contract
    "STALE_OBJECT",
    "BlobRecord",
    "CommerceClient",
    "CustomerRecord",
    "DiscountResult",
    "RemoteResult",
    "SegmentResult",
    "UserError",
    # Normalizer
    "DataNormalizer",
    "FieldMapping",
    "SchemaMapping",
    "SHOPIFY_CUSTOMER_MAPPING",
    "TRANSFORMS",
    # Shopify
    "ShopifyAdminAdapter",
    "to_customer_gid",
]
