"""VIP pricing API router — rules admin, app-proxy check, login analytics.

Follows the standard router pattern:
- Shop isolation via middleware
- Core services assembled per request through FastAPI Depends
- VipPricingError subclasses propagate to the app-level exception handler
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.middleware import get_current_shop
from core.errors import ValidationError
from core.integrations.commerce import CommerceClient
from core.integrations.shopify import ShopifyAdminAdapter
from core.logging import get_logger
from verticals.vip_pricing.access import VipAccessChecker
from verticals.vip_pricing.access_log import AccessLogSink
from verticals.vip_pricing.analytics import LoginAnalytics
from verticals.vip_pricing.config import ShopifyConfig, config
from verticals.vip_pricing.models.schemas import (
    AccessCheckDebug,
    AccessCheckResponse,
    CustomerSummaryResponse,
    LoginReportResponse,
    RuleCreate,
    RuleResponse,
)
from verticals.vip_pricing.provisioner import DiscountProvisioner
from verticals.vip_pricing.repository import (
    AccessLogRepository,
    IntentRepository,
    get_access_log_repository,
    get_intent_repository,
)
from verticals.vip_pricing.rule_store import RuleStore

logger = get_logger("vip_pricing.router")

router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================

def get_shopify_config() -> ShopifyConfig:
    return config.shopify


def get_commerce_client(
    request: Request,
    shopify: ShopifyConfig = Depends(get_shopify_config),
) -> CommerceClient:
    """One Admin API adapter per allowed shop, cached on the application."""
    shop = get_current_shop()
    if not shop:
        raise ValidationError("missing shop")
    if not shopify.accepts(shop):
        logger.warning("Rejected request for unknown shop", shop=shop)
        raise ValidationError("unknown shop")

    clients = request.app.state.commerce_clients
    if shop not in clients:
        clients[shop] = ShopifyAdminAdapter(
            shop=shop,
            access_token=shopify.access_token,
            api_version=shopify.api_version,
            timeout=shopify.request_timeout,
        )
    return clients[shop]


def get_rule_store(client: CommerceClient = Depends(get_commerce_client)) -> RuleStore:
    return RuleStore(client, config.storage)


def get_provisioner(
    client: CommerceClient = Depends(get_commerce_client),
    store: RuleStore = Depends(get_rule_store),
    intents: IntentRepository = Depends(get_intent_repository),
) -> DiscountProvisioner:
    return DiscountProvisioner(client, store, intents)


def get_access_sink(request: Request) -> AccessLogSink:
    return request.app.state.access_sink


def get_access_checker(
    client: CommerceClient = Depends(get_commerce_client),
    store: RuleStore = Depends(get_rule_store),
    sink: AccessLogSink = Depends(get_access_sink),
) -> VipAccessChecker:
    return VipAccessChecker(client, store, sink, config.access_log)


def get_login_analytics(
    repo: AccessLogRepository = Depends(get_access_log_repository),
    client: CommerceClient = Depends(get_commerce_client),
) -> LoginAnalytics:
    return LoginAnalytics(
        repo,
        client=client,
        identity=config.access_log.customer_identity,
        refresh=config.access_log.refresh_order_counts,
        limit=config.access_log.analytics_limit,
    )


# ============================================================================
# Rule Endpoints
# ============================================================================

@router.get("/rules")
async def list_rules(
    client: CommerceClient = Depends(get_commerce_client),
    store: RuleStore = Depends(get_rule_store),
):
    """Active rules in creation order."""
    rules = await store.list_rules(await client.get_shop_id())
    return {"data": [RuleResponse.from_rule(r) for r in rules]}


@router.post("/rules", status_code=201, response_model=RuleResponse)
async def create_rule(
    request: RuleCreate,
    client: CommerceClient = Depends(get_commerce_client),
    provisioner: DiscountProvisioner = Depends(get_provisioner),
):
    """Provision a segment + automatic discount for a tag and record the rule."""
    rule = await provisioner.create_rule(
        await client.get_shop_id(),
        tag=request.tag,
        title=request.title,
        percentage=request.percentage,
        shop=get_current_shop(),
    )
    return RuleResponse.from_rule(rule)


@router.post("/rules/reconcile")
async def reconcile_rules(
    client: CommerceClient = Depends(get_commerce_client),
    provisioner: DiscountProvisioner = Depends(get_provisioner),
):
    """Resolve provisioning runs that never finished."""
    actions = await provisioner.reconcile(await client.get_shop_id(), get_current_shop())
    return {"data": [a.to_dict() for a in actions]}


@router.delete("/rules/{discount_id:path}")
async def delete_rule(
    discount_id: str,
    segment_id: Optional[str] = None,
    client: CommerceClient = Depends(get_commerce_client),
    provisioner: DiscountProvisioner = Depends(get_provisioner),
):
    """Delete the discount and segment, then drop the rule."""
    report = await provisioner.delete_rule(await client.get_shop_id(), discount_id, segment_id)
    return report.to_dict()


# ============================================================================
# App proxy
# ============================================================================

@router.get("/proxy/check", response_model=AccessCheckResponse, response_model_exclude_none=True)
async def proxy_check(
    customer_id: Optional[str] = Query(None),
    checker: VipAccessChecker = Depends(get_access_checker),
):
    """Storefront check: is the signed-in customer a VIP?"""
    shop = get_current_shop()
    try:
        result = await checker.check(shop, customer_id)
    except Exception:
        logger.exception("VIP access check failed", customer_id=customer_id)
        return JSONResponse({"is_vip": False, "error": "Server Error"}, status_code=500)

    return AccessCheckResponse(
        is_vip=result.is_vip,
        tags=result.tags,
        matched_tags=result.matched_tags,
        customer_name=result.customer_name,
        orders_count=result.orders_count,
        message=result.message,
        debug=AccessCheckDebug(
            shop=shop or None,
            log_status=result.log.status.value,
            log_reason=result.log.reason,
        ),
    )


# ============================================================================
# Access log
# ============================================================================

@router.post("/access-log/replay")
async def replay_access_log(
    limit: int = Query(50, ge=1, le=500),
    sink: AccessLogSink = Depends(get_access_sink),
):
    """Retry access log writes parked in the dead letter queue."""
    return await sink.replay_dead_letters(limit=limit)


# ============================================================================
# Analytics
# ============================================================================

@router.get("/analytics/logins", response_model=LoginReportResponse)
async def login_analytics(
    limit: Optional[int] = Query(None, ge=1, le=5000),
    analytics: LoginAnalytics = Depends(get_login_analytics),
):
    """How many VIP customers signed in, and when the last one did."""
    report = await analytics.report(get_current_shop(), limit=limit)
    return LoginReportResponse(
        total_logins=report.total_logins,
        unique_customers=report.unique_customers,
        last_login_at=report.last_login_at,
        customers=[CustomerSummaryResponse(**s.to_dict()) for s in report.summaries],
        error=report.error,
    )
