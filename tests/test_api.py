"""Test the HTTP surface with in-memory dependencies."""
from datetime import datetime, timezone
from types import SimpleNamespace
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.middleware import _current_shop
from conftest import SHOP, SHOP_ID, FakeSessionFactory
from core.errors import TransportError
from core.integrations.commerce import UserError
from core.integrations.shopify import ShopifyAdminAdapter
from verticals.vip_pricing.access_log import AccessLogger, AccessLogSink
from verticals.vip_pricing.config import ShopifyConfig, VipPricingConfig
from verticals.vip_pricing.repository import get_access_log_repository, get_intent_repository
from verticals.vip_pricing.router import get_access_sink, get_commerce_client, get_shopify_config

HEADERS = {"X-Shop-Domain": SHOP}
T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class FakeAccessLogRepository:
    entries = [
        {"customer_key": "c1", "display_name": "Ada", "tag_snapshot": "Gold", "orders_count": "3", "timestamp": T0},
        {"customer_key": "c1", "display_name": "Ada", "tag_snapshot": "Gold", "orders_count": "2", "timestamp": T0},
    ]

    async def newest_first(self, shop, limit=500):
        return self.entries


@pytest.fixture
def sink():
    return AccessLogSink(AccessLogger(FakeSessionFactory()), maxsize=10)


@pytest.fixture
def api(client, intents, sink):
    app.dependency_overrides[get_commerce_client] = lambda: client
    app.dependency_overrides[get_intent_repository] = lambda: intents
    app.dependency_overrides[get_access_sink] = lambda: sink
    app.dependency_overrides[get_access_log_repository] = lambda: FakeAccessLogRepository()
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_create_and_list_rules(api, intents):
    resp = api.post("/api/vip/rules", json={"tag": "Gold", "percentage": 15, "title": "Gold Off"}, headers=HEADERS)
    assert resp.status_code == 201
    created = resp.json()
    assert created["tag"] == "Gold"
    assert created["percentage"] == 15

    resp = api.get("/api/vip/rules", headers=HEADERS)
    assert resp.status_code == 200
    assert [r["discount_id"] for r in resp.json()["data"]] == [created["discount_id"]]

    (intent,) = intents.intents.values()
    assert intent["shop"] == SHOP


def test_create_rule_remote_error(api, client):
    client.segment_errors = [UserError(message="Name already exists", field=["name"])]

    resp = api.post("/api/vip/rules", json={"tag": "Gold", "percentage": 15}, headers=HEADERS)

    assert resp.status_code == 422
    assert resp.json()["code"] == "REMOTE_ERROR"
    assert resp.json()["error"] == "Name already exists"


def test_create_rule_validation_error(api, client):
    resp = api.post("/api/vip/rules", json={"tag": "", "percentage": 15}, headers=HEADERS)

    assert resp.status_code == 400
    assert resp.json() == {"status": "fail", "code": "VALIDATION_ERROR", "error": "missing tag", "details": {}}
    assert client.calls == []


def test_delete_rule_reports_steps(api, client):
    created = api.post("/api/vip/rules", json={"tag": "Gold", "percentage": 15}, headers=HEADERS).json()
    client.delete_discount_errors = [UserError(message="Discount does not exist")]

    resp = api.delete(
        f"/api/vip/rules/{quote(created['discount_id'], safe='')}",
        params={"segment_id": created["segment_id"]},
        headers=HEADERS,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["rule_removed"] is True
    assert body["discount"]["errors"] == ["Discount does not exist"]
    assert body["segment"]["ok"] is True
    assert body["fully_deleted"] is False


def test_reconcile_endpoint(api):
    resp = api.post("/api/vip/rules/reconcile", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"data": []}


def test_corrupt_rules_blob(api, client):
    client.put_blob(SHOP_ID, "{oops")

    resp = api.get("/api/vip/rules", headers=HEADERS)

    assert resp.status_code == 500
    assert resp.json()["code"] == "CORRUPT_STATE"


def test_transport_error_is_generic(api, client):
    async def unreachable():
        raise TransportError("ShopId failed", details={"status_code": 502})

    client.get_shop_id = unreachable
    resp = api.get("/api/vip/rules", headers=HEADERS)

    assert resp.status_code == 502
    assert resp.json() == {"error": "Server Error"}


def test_proxy_check_vip(api, client, sink):
    client.put_blob(SHOP_ID, '[{"tag": "Gold", "percentage": 15, "discountId": "d1", "segmentId": "s1", "title": ""}]')
    client.add_customer("gid://shopify/Customer/42", ["Gold"], display_name="Ada", direct=3)

    resp = api.get("/api/vip/proxy/check", params={"customer_id": "42", "shop": SHOP})

    assert resp.status_code == 200
    body = resp.json()
    assert body["is_vip"] is True
    assert body["matched_tags"] == ["Gold"]
    assert body["orders_count"] == 3
    assert body["debug"] == {"shop": SHOP, "log_status": "queued"}
    assert sink.queue.qsize() == 1


def test_proxy_check_without_customer(api):
    resp = api.get("/api/vip/proxy/check", params={"shop": SHOP})
    assert resp.json()["is_vip"] is False
    assert resp.json()["message"] == "No customer ID provided"


def test_proxy_check_failure(api, client):
    async def unreachable(customer_ref):
        raise TransportError("CustomerTags failed")

    client.get_customer = unreachable
    resp = api.get("/api/vip/proxy/check", params={"customer_id": "42", "shop": SHOP})

    assert resp.status_code == 500
    assert resp.json() == {"is_vip": False, "error": "Server Error"}


def test_login_analytics(api):
    resp = api.get("/api/vip/analytics/logins", headers=HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["total_logins"] == 2
    assert body["unique_customers"] == 1
    assert body["customers"][0]["login_count"] == 2
    assert body["customers"][0]["display_label"] == "Ada"


def test_replay_endpoint(api):
    resp = api.post("/api/vip/access-log/replay", headers=HEADERS)
    assert resp.json() == {"resolved": 0, "failed": 0}


def test_health(api):
    resp = api.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["access_log"]["worker_running"] is True
    assert body["access_log"]["dead_letters"]["queue_name"] == "access_log"


# ---------------------------------------------------------------------------
# Shop allow-list
# ---------------------------------------------------------------------------

ALLOWED = ShopifyConfig(access_token="shpat_secret", allowed_shops=(SHOP,))


@pytest.fixture
def guarded_api(intents, sink):
    app.dependency_overrides[get_shopify_config] = lambda: ALLOWED
    app.dependency_overrides[get_intent_repository] = lambda: intents
    app.dependency_overrides[get_access_sink] = lambda: sink
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.mark.parametrize(
    "params, headers",
    [
        ({"shop": "attacker.example"}, {}),
        ({}, {"X-Shop-Domain": "another.evil"}),
        ({}, {"X-Shop-Domain": "not-installed.myshopify.com"}),
        ({"shop": "gold-shop.myshopify.com.attacker.example"}, {}),
    ],
)
def test_unknown_shop_is_rejected_before_any_adapter(guarded_api, params, headers):
    """The access token never leaves for a shop outside the allow-list."""
    resp = guarded_api.get("/api/vip/rules", params=params, headers=headers)

    assert resp.status_code == 400
    assert resp.json()["error"] == "unknown shop"
    assert app.state.commerce_clients == {}


def test_allowed_shop_gets_one_cached_adapter():
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(commerce_clients={})))
    token = _current_shop.set(SHOP)
    try:
        first = get_commerce_client(request, ALLOWED)
        second = get_commerce_client(request, ALLOWED)
    finally:
        _current_shop.reset(token)

    assert first is second
    assert isinstance(first, ShopifyAdminAdapter)
    assert first.endpoint_for(SHOP).startswith(f"https://{SHOP}/")
    assert list(request.app.state.commerce_clients) == [SHOP]


def test_shop_config_accepts_only_listed_shop_domains():
    assert ALLOWED.accepts(SHOP)
    assert not ALLOWED.accepts("attacker.example")
    assert not ShopifyConfig(allowed_shops=("attacker.example",)).accepts("attacker.example")
    assert not ShopifyConfig().accepts(SHOP)


def test_allowed_shops_from_env(monkeypatch):
    monkeypatch.setenv("VIP_PRICING_ALLOWED_SHOPS", " Gold-Shop.myshopify.com, ,b.myshopify.com")

    shopify = VipPricingConfig.from_env().shopify

    assert shopify.allowed_shops == ("gold-shop.myshopify.com", "b.myshopify.com")
