"""Test rule provisioning, deletion and reconciliation."""
import pytest

from conftest import SHOP, SHOP_ID
from core.errors import PartialFailureError, RemoteError, TransportError, ValidationError
from core.integrations.commerce import UserError
from patterns.rules_engine import classify
from verticals.vip_pricing.provisioner import DiscountProvisioner, default_title
from verticals.vip_pricing.rule_store import RuleStore


def make_provisioner(client, intents=None):
    return DiscountProvisioner(client, RuleStore(client), intents)


@pytest.mark.asyncio
async def test_create_rule_end_to_end(client, intents):
    provisioner = make_provisioner(client, intents)

    rule = await provisioner.create_rule(SHOP_ID, "Gold", "Gold Off", 15, shop=SHOP)

    rules = await RuleStore(client).list_rules(SHOP_ID)
    assert rules == [rule]
    assert rule.tag == "Gold"
    assert rule.percentage == 15

    discount = client.discounts[rule.discount_ref]
    assert discount["percentage"] == pytest.approx(0.15)
    assert discount["segment_id"] == rule.segment_ref
    assert client.segment_queries[rule.segment_ref] == "customer_tags CONTAINS 'Gold'"
    assert client.segments[rule.segment_ref].name == "Gold Users"

    result = classify({"Gold", "Newsletter"}, rules)
    assert result.is_vip
    assert result.matched_tags == {"Gold"}

    (intent,) = intents.intents.values()
    assert intent["state"] == "completed"
    assert intent["discount_id"] == rule.discount_ref


@pytest.mark.asyncio
async def test_create_rule_segment_rejected(client, intents):
    client.segment_errors = [UserError(message="Name already exists", field=["name"])]

    with pytest.raises(RemoteError) as exc_info:
        await make_provisioner(client, intents).create_rule(SHOP_ID, "Gold", "Gold Off", 15, shop=SHOP)

    assert exc_info.value.message == "Name already exists"
    assert not isinstance(exc_info.value, PartialFailureError)
    assert client.blob_value() is None
    assert "create_discount" not in client.calls
    assert [i["state"] for i in intents.intents.values()] == ["failed"]


@pytest.mark.asyncio
async def test_create_rule_discount_rejected_deletes_segment(client, intents):
    client.discount_errors = [UserError(message="Title can't be blank", field=["title"])]

    with pytest.raises(PartialFailureError) as exc_info:
        await make_provisioner(client, intents).create_rule(SHOP_ID, "Gold", "Gold Off", 15, shop=SHOP)

    err = exc_info.value
    assert err.message == "Title can't be blank"
    assert err.compensated is True
    assert client.segments == {}
    assert client.blob_value() is None
    assert [i["state"] for i in intents.intents.values()] == ["compensated"]


@pytest.mark.asyncio
async def test_create_rule_failed_compensation_is_orphaned(client, intents):
    client.discount_errors = [UserError(message="Invalid segment")]
    client.delete_segment_errors = [UserError(message="Segment is busy")]

    with pytest.raises(PartialFailureError) as exc_info:
        await make_provisioner(client, intents).create_rule(SHOP_ID, "Gold", "", 15, shop=SHOP)

    assert exc_info.value.compensated is False
    assert exc_info.value.segment_id in client.segments
    (intent,) = intents.intents.values()
    assert intent["state"] == "orphaned"
    assert intent["segment_id"] == exc_info.value.segment_id


@pytest.mark.asyncio
async def test_create_rule_discount_transport_failure_deletes_segment(client, intents):
    """A throttled or unreachable discount call still removes the new segment."""
    async def unreachable(**kwargs):
        raise TransportError("CreateAutomaticDiscount failed", details={"status_code": 429})

    client.create_automatic_percentage_discount = unreachable

    with pytest.raises(TransportError):
        await make_provisioner(client, intents).create_rule(SHOP_ID, "Gold", "Gold Off", 15, shop=SHOP)

    assert client.segments == {}
    assert client.calls.count("delete_segment") == 1
    assert client.blob_value() is None
    (intent,) = intents.intents.values()
    assert intent["state"] == "compensated"
    assert intent["error"] == "CreateAutomaticDiscount failed"


@pytest.mark.asyncio
async def test_create_rule_discount_transport_failure_uncompensated(client, intents):
    async def unreachable(**kwargs):
        raise TransportError("CreateAutomaticDiscount failed")

    client.create_automatic_percentage_discount = unreachable
    client.delete_segment_errors = [UserError(message="Segment is busy")]

    with pytest.raises(TransportError):
        await make_provisioner(client, intents).create_rule(SHOP_ID, "Gold", "Gold Off", 15, shop=SHOP)

    (intent,) = intents.intents.values()
    assert intent["state"] == "orphaned"
    assert intent["segment_id"] in client.segments


@pytest.mark.asyncio
async def test_create_rule_segment_transport_failure_marks_intent_failed(client, intents):
    async def unreachable(name, query):
        raise TransportError("CreateSegment failed")

    client.create_segment = unreachable

    with pytest.raises(TransportError):
        await make_provisioner(client, intents).create_rule(SHOP_ID, "Gold", "Gold Off", 15, shop=SHOP)

    assert "create_discount" not in client.calls
    (intent,) = intents.intents.values()
    assert intent["state"] == "failed"
    assert intent["error"] == "CreateSegment failed"


@pytest.mark.asyncio
async def test_create_rule_unrecorded_rule_is_orphaned(client, intents):
    client.set_blob_errors = [[UserError(message="Value is too big")]]

    with pytest.raises(RemoteError, match="Value is too big"):
        await make_provisioner(client, intents).create_rule(SHOP_ID, "Gold", "", 15, shop=SHOP)

    assert [i["state"] for i in intents.intents.values()] == ["orphaned"]


@pytest.mark.asyncio
@pytest.mark.parametrize("tag", ["", "   ", "Go'ld", "Go\\ld", "Gold\n"])
async def test_create_rule_rejects_bad_tag(client, tag):
    with pytest.raises(ValidationError):
        await make_provisioner(client).create_rule(SHOP_ID, tag, "", 15)
    assert client.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("percentage", [0, -5, 100.5, "abc", float("nan")])
async def test_create_rule_rejects_bad_percentage(client, percentage):
    with pytest.raises(ValidationError):
        await make_provisioner(client).create_rule(SHOP_ID, "Gold", "", percentage)
    assert client.calls == []


@pytest.mark.asyncio
async def test_create_rule_default_title(client):
    rule = await make_provisioner(client).create_rule(SHOP_ID, "Gold", "  ", 15)
    assert rule.title == "Gold Automatic 15% Off"
    assert default_title("Gold", 12.5) == "Gold Automatic 12.5% Off"


@pytest.mark.asyncio
async def test_delete_rule_discount_failure_still_removes_rule(client):
    provisioner = make_provisioner(client)
    rule = await provisioner.create_rule(SHOP_ID, "Gold", "Gold Off", 15)
    client.delete_discount_errors = [UserError(message="Discount does not exist")]

    report = await provisioner.delete_rule(SHOP_ID, rule.discount_ref, rule.segment_ref)

    assert report.rule_removed is True
    assert report.discount.ok is False
    assert report.discount.errors == ["Discount does not exist"]
    assert report.segment.ok is True
    assert not report.fully_deleted
    assert client.segments == {}
    assert await RuleStore(client).list_rules(SHOP_ID) == []


@pytest.mark.asyncio
async def test_delete_rule_transport_failure_is_recorded(client):
    provisioner = make_provisioner(client)
    rule = await provisioner.create_rule(SHOP_ID, "Gold", "Gold Off", 15)

    async def unreachable(segment_id):
        raise TransportError("DeleteSegment failed")

    client.delete_segment = unreachable
    report = await provisioner.delete_rule(SHOP_ID, rule.discount_ref, rule.segment_ref)

    assert report.discount.ok is True
    assert report.segment.errors == ["DeleteSegment failed"]
    assert report.rule_removed is True


@pytest.mark.asyncio
async def test_delete_rule_without_segment_skips_step(client):
    provisioner = make_provisioner(client)
    rule = await provisioner.create_rule(SHOP_ID, "Gold", "Gold Off", 15)

    report = await provisioner.delete_rule(SHOP_ID, rule.discount_ref, None)

    assert report.segment.skipped is True
    assert report.segment.ok is True
    assert "delete_segment" not in client.calls


@pytest.mark.asyncio
async def test_delete_rule_requires_a_reference(client):
    with pytest.raises(ValidationError):
        await make_provisioner(client).delete_rule(SHOP_ID, None, "")


@pytest.mark.asyncio
async def test_reconcile_resolves_unfinished_intents(client, intents):
    provisioner = make_provisioner(client, intents)
    recorded = await provisioner.create_rule(SHOP_ID, "Gold", "Gold Off", 15, shop=SHOP)

    # recorded in the RuleSet but the final state change never landed
    done = await intents.open(SHOP, "Gold", "Gold Off", 15)
    intents.intents[done].update(
        state="discount_created", segment_id=recorded.segment_ref, discount_id=recorded.discount_ref
    )

    # remote resources exist but no rule was written
    segment = await client.create_segment("Silver Users", "customer_tags CONTAINS 'Silver'")
    discount = await client.create_automatic_percentage_discount("Silver", 0.1, segment.payload.segment_id, None)
    orphan = await intents.open(SHOP, "Silver", "Silver", 10)
    intents.intents[orphan].update(
        state="orphaned",
        segment_id=segment.payload.segment_id,
        discount_id=discount.payload.discount_id,
    )

    stuck = await intents.open(SHOP, "Bronze", "Bronze", 5)

    actions = {a.intent_id: a for a in await provisioner.reconcile(SHOP_ID, SHOP)}

    assert actions[done].to_state.value == "completed"
    assert actions[orphan].to_state.value == "compensated"
    assert [s.ok for s in actions[orphan].steps] == [True, True]
    assert actions[stuck].to_state.value == "failed"
    assert intents.intents[orphan]["state"] == "compensated"
    assert discount.payload.discount_id not in client.discounts
    assert segment.payload.segment_id not in client.segments
    assert recorded.discount_ref in client.discounts


@pytest.mark.asyncio
async def test_reconcile_keeps_orphan_when_deletion_fails(client, intents):
    provisioner = make_provisioner(client, intents)
    orphan = await intents.open(SHOP, "Silver", "Silver", 10)
    intents.intents[orphan].update(state="segment_created", segment_id="gid://shopify/Segment/77")
    client.delete_segment_errors = [UserError(message="Segment is busy")]

    (action,) = await provisioner.reconcile(SHOP_ID, SHOP)

    assert action.to_state.value == "orphaned"
    assert intents.intents[orphan]["error"] == "Segment is busy"


@pytest.mark.asyncio
async def test_reconcile_without_intent_log(client):
    assert await make_provisioner(client).reconcile(SHOP_ID, SHOP) == []
