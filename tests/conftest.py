"""Shared in-memory fakes: commerce client, intent log, database session."""
from contextlib import asynccontextmanager

import pytest

from core.integrations.commerce import (
    STALE_OBJECT,
    BlobRecord,
    CustomerRecord,
    DiscountResult,
    RemoteResult,
    SegmentResult,
    UserError,
)
from patterns.workflow_states import ProvisioningState, UNFINISHED_STATES

SHOP = "gold-shop.myshopify.com"
SHOP_ID = "gid://shopify/Shop/1"


class FakeCommerceClient:
    """CommerceClient backed by dicts. Error lists can be primed per operation."""

    def __init__(self, shop_id=SHOP_ID):
        self.shop_id = shop_id
        self.blobs = {}
        self.segments = {}
        self.segment_queries = {}
        self.discounts = {}
        self.customers = {}
        self.calls = []

        self.segment_errors = []
        self.discount_errors = []
        self.delete_segment_errors = []
        self.delete_discount_errors = []
        self.set_blob_errors = []  # one list of errors per upcoming call

        self._seq = 0
        self._version = 0

    def _next(self):
        self._seq += 1
        return self._seq

    async def get_shop_id(self):
        return self.shop_id

    async def create_segment(self, name, query):
        self.calls.append("create_segment")
        if self.segment_errors:
            return RemoteResult(errors=list(self.segment_errors))
        segment_id = f"gid://shopify/Segment/{self._next()}"
        self.segments[segment_id] = SegmentResult(segment_id=segment_id, name=name)
        self.segment_queries[segment_id] = query
        return RemoteResult(payload=self.segments[segment_id])

    async def delete_segment(self, segment_id):
        self.calls.append("delete_segment")
        if self.delete_segment_errors:
            return list(self.delete_segment_errors)
        self.segments.pop(segment_id, None)
        return []

    async def create_automatic_percentage_discount(self, title, percentage, segment_id, starts_at):
        self.calls.append("create_discount")
        if self.discount_errors:
            return RemoteResult(errors=list(self.discount_errors))
        discount_id = f"gid://shopify/DiscountAutomaticNode/{self._next()}"
        self.discounts[discount_id] = {
            "title": title,
            "percentage": percentage,
            "segment_id": segment_id,
            "starts_at": starts_at,
        }
        return RemoteResult(payload=DiscountResult(discount_id=discount_id, title=title, status="ACTIVE"))

    async def delete_automatic_discount(self, discount_id):
        self.calls.append("delete_discount")
        if self.delete_discount_errors:
            return list(self.delete_discount_errors)
        self.discounts.pop(discount_id, None)
        return []

    async def get_blob(self, owner_id, namespace, key):
        return self.blobs.get((owner_id, namespace, key))

    async def set_blob(self, owner_id, namespace, key, json_value, compare_version=None, create_only=False):
        self.calls.append("set_blob")
        if self.set_blob_errors:
            return self.set_blob_errors.pop(0)
        current = self.blobs.get((owner_id, namespace, key))
        if create_only and current is not None:
            return [UserError(message="The metafield has been modified", code=STALE_OBJECT)]
        if compare_version is not None and current is not None and current.version != compare_version:
            return [UserError(message="The metafield has been modified", code=STALE_OBJECT)]
        self.put_blob(owner_id, json_value, namespace, key)
        return []

    async def get_customer(self, customer_ref):
        return self.customers.get(customer_ref)

    # -- test helpers --

    def put_blob(self, owner_id, value, namespace="vip_pricing", key="rules"):
        self._version += 1
        self.blobs[(owner_id, namespace, key)] = BlobRecord(value=value, version=f"v{self._version}")

    def blob_value(self, owner_id=SHOP_ID, namespace="vip_pricing", key="rules"):
        record = self.blobs.get((owner_id, namespace, key))
        return record.value if record else None

    def add_customer(self, customer_id, tags, display_name="", direct=None, connection=None):
        self.customers[customer_id] = CustomerRecord(
            customer_id=customer_id,
            display_name=display_name,
            tags=list(tags),
            order_count_direct=direct,
            order_count_via_connection=connection,
        )


class FakeIntentLog:
    def __init__(self):
        self.intents = {}

    async def open(self, shop, tag, title, percentage):
        intent_id = f"intent-{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "id": intent_id,
            "shop": shop,
            "tag": tag,
            "title": title,
            "percentage": percentage,
            "state": ProvisioningState.STARTED.value,
            "segment_id": None,
            "discount_id": None,
            "error": None,
        }
        return intent_id

    async def advance(self, intent_id, shop, state, **fields):
        self.intents[intent_id].update(state=state.value, **fields)

    async def list_unfinished(self, shop, created_before=None):
        return [
            dict(i) for i in self.intents.values()
            if i["shop"] == shop and ProvisioningState(i["state"]) in UNFINISHED_STATES
        ]


class FakeSession:
    def __init__(self, rows):
        self.rows = rows

    def add(self, item):
        self.rows.append(item)

    async def flush(self):
        pass


class FakeSessionFactory:
    """Stands in for core.database.log_session. `fail=True` simulates a dead database."""

    def __init__(self, fail=False):
        self.rows = []
        self.fail = fail

    @asynccontextmanager
    async def __call__(self):
        if self.fail:
            raise ConnectionError("database unavailable")
        yield FakeSession(self.rows)


@pytest.fixture
def client():
    return FakeCommerceClient()


@pytest.fixture
def intents():
    return FakeIntentLog()
