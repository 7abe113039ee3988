"""Dataclass-based configuration for the VIP pricing vertical.

Thresholds, names, and policies are frozen dataclasses:
- Type safety and sensible defaults
- Immutability (frozen=True prevents accidental mutation)
- Overrides from environment variables via `from_env`
"""

import os
import re
from dataclasses import dataclass, field
from enum import Enum

from patterns.rules_engine import LogPolicy


class CustomerIdentity(str, Enum):
    """Which customer attribute keys access log entries."""

    CUSTOMER_ID = "customer_id"      # stable platform GID
    DISPLAY_NAME = "display_name"    # human-readable, not unique


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RuleStorageConfig:
    """Where the RuleSet blob lives and how writes are retried."""

    namespace: str = "vip_pricing"
    key: str = "rules"
    max_write_attempts: int = 3


@dataclass(frozen=True)
class AccessLogConfig:
    """Access logging and reporting settings."""

    policy: LogPolicy = LogPolicy.MATCHED_RULE
    literal_tag: str = "VIP"
    customer_identity: CustomerIdentity = CustomerIdentity.CUSTOMER_ID
    queue_size: int = 1000
    analytics_limit: int = 500
    refresh_order_counts: bool = True


SHOP_DOMAIN = re.compile(r"^[a-z0-9][a-z0-9-]*\.myshopify\.com$")


@dataclass(frozen=True)
class ShopifyConfig:
    """Admin API access for the installed shops.

    The access token is only ever sent to shops listed in `allowed_shops`.
    """

    access_token: str = ""
    api_version: str = "2025-01"
    request_timeout: float = 30.0
    allowed_shops: tuple[str, ...] = ()

    def accepts(self, shop: str) -> bool:
        return bool(SHOP_DOMAIN.match(shop)) and shop in self.allowed_shops


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VipPricingConfig:
    """Complete configuration for the VIP pricing vertical.

    Usage::

        config = VipPricingConfig.from_env()
        store = RuleStore(client, config.storage)
    """

    storage: RuleStorageConfig = field(default_factory=RuleStorageConfig)
    access_log: AccessLogConfig = field(default_factory=AccessLogConfig)
    shopify: ShopifyConfig = field(default_factory=ShopifyConfig)
    log_level: str = "info"

    @classmethod
    def default(cls) -> "VipPricingConfig":
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "VIP_PRICING_") -> "VipPricingConfig":
        """Create config from environment variables.

        Example: VIP_PRICING_LOG_POLICY=any_tag
        """
        def env(name: str, default):
            return os.getenv(f"{prefix}{name}", default)

        storage = RuleStorageConfig(
            namespace=env("RULES_NAMESPACE", RuleStorageConfig.namespace),
            key=env("RULES_KEY", RuleStorageConfig.key),
            max_write_attempts=int(env("MAX_WRITE_ATTEMPTS", RuleStorageConfig.max_write_attempts)),
        )
        access_log = AccessLogConfig(
            policy=LogPolicy(env("LOG_POLICY", AccessLogConfig.policy.value)),
            literal_tag=env("LITERAL_TAG", AccessLogConfig.literal_tag),
            customer_identity=CustomerIdentity(
                env("CUSTOMER_IDENTITY", AccessLogConfig.customer_identity.value)
            ),
            queue_size=int(env("LOG_QUEUE_SIZE", AccessLogConfig.queue_size)),
            analytics_limit=int(env("ANALYTICS_LIMIT", AccessLogConfig.analytics_limit)),
            refresh_order_counts=env("REFRESH_ORDER_COUNTS", "true").lower() == "true",
        )
        shopify = ShopifyConfig(
            access_token=env("ACCESS_TOKEN", ""),
            api_version=env("API_VERSION", ShopifyConfig.api_version),
            request_timeout=float(env("REQUEST_TIMEOUT", ShopifyConfig.request_timeout)),
            allowed_shops=tuple(
                s.strip().lower() for s in env("ALLOWED_SHOPS", "").split(",") if s.strip()
            ),
        )
        return cls(
            storage=storage,
            access_log=access_log,
            shopify=shopify,
            log_level=env("LOG_LEVEL", "info"),
        )


# Process-wide configuration instance
config = VipPricingConfig.from_env()
