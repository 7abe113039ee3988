"""VIP access check — the storefront app-proxy flow.

Looks up the visiting customer, classifies their tags against the shop's
active rules, and hands a log event to the sink when the configured logging
policy allows it. The classifier and the logging policy are pure functions
in patterns.rules_engine; this module only wires them to live data.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from core.integrations.commerce import CommerceClient, CustomerRecord
from core.integrations.shopify import to_customer_gid
from core.logging import get_logger
from patterns.rules_engine import ClassificationResult, check_access_loggable, classify
from verticals.vip_pricing.access_log import AccessEvent, AccessLogSink, LogOutcome, orders_count_fallback
from verticals.vip_pricing.config import AccessLogConfig, CustomerIdentity
from verticals.vip_pricing.rule_store import RuleStore

logger = get_logger("vip_pricing.access")


@dataclass
class AccessCheckResult:
    is_vip: bool
    log: LogOutcome
    tags: list[str] = field(default_factory=list)
    matched_tags: list[str] = field(default_factory=list)
    customer_name: Optional[str] = None
    orders_count: int = 0
    message: Optional[str] = None


class VipAccessChecker:
    def __init__(
        self,
        client: CommerceClient,
        rule_store: RuleStore,
        sink: AccessLogSink,
        access_log: Optional[AccessLogConfig] = None,
    ):
        self.client = client
        self.rule_store = rule_store
        self.sink = sink
        self.access_log = access_log or AccessLogConfig()

    async def check(self, shop: str, customer_ref: Optional[str]) -> AccessCheckResult:
        if not customer_ref:
            return AccessCheckResult(
                is_vip=False,
                log=LogOutcome.skipped("no customer"),
                message="No customer ID provided",
            )

        customer = await self.client.get_customer(to_customer_gid(customer_ref))
        if customer is None:
            return AccessCheckResult(is_vip=False, log=LogOutcome.skipped("unknown customer"))

        rules = await self.rule_store.list_rules(await self.client.get_shop_id())
        classification = classify(customer.tags, rules)
        orders_count = orders_count_fallback(
            customer.order_count_direct,
            customer.order_count_via_connection,
            0,
        )

        outcome = self._log(shop, customer, classification, orders_count)
        logger.info(
            "VIP access checked",
            customer_id=customer.customer_id,
            is_vip=classification.is_vip,
            log_status=outcome.status.value,
        )
        return AccessCheckResult(
            is_vip=classification.is_vip,
            log=outcome,
            tags=list(customer.tags),
            matched_tags=[t for t in customer.tags if t in classification.matched_tags],
            customer_name=customer.display_name or None,
            orders_count=orders_count,
        )

    def customer_key(self, customer: CustomerRecord) -> str:
        if self.access_log.customer_identity is CustomerIdentity.DISPLAY_NAME:
            return customer.display_name
        return customer.customer_id

    def _log(
        self,
        shop: str,
        customer: CustomerRecord,
        classification: ClassificationResult,
        orders_count: int,
    ) -> LogOutcome:
        decision = check_access_loggable(
            self.access_log.policy,
            customer.tags,
            classification,
            literal_tag=self.access_log.literal_tag,
        )
        if not decision.passed:
            return LogOutcome.skipped(decision.message)
        if not shop:
            return LogOutcome.skipped("missing shop")

        key = self.customer_key(customer)
        if not key:
            return LogOutcome.skipped("missing customer key")

        snapshot = [t for t in customer.tags if t in classification.matched_tags] or list(customer.tags)
        return self.sink.submit(
            AccessEvent(
                shop=shop,
                customer_key=key,
                tag_snapshot=", ".join(snapshot),
                order_count_snapshot=orders_count,
                display_name=customer.display_name or None,
            )
        )
