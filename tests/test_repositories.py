"""Test the SQLAlchemy repositories against an in-memory SQLite database."""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import pytest

from core.database import DatabaseSettings, build_engine, build_session_factory, init_db, session_scope
from patterns.workflow_states import ProvisioningState
from verticals.vip_pricing.access_log import AccessLogger
from verticals.vip_pricing.models.db_models import AccessLogEntry, ProvisioningIntent
from verticals.vip_pricing.repository import AccessLogRepository, IntentRepository

SHOP = "gold-shop.myshopify.com"
OTHER = "other-shop.myshopify.com"
T0 = datetime(2026, 10, 1, 12, 0)


@asynccontextmanager
async def database():
    engine = build_engine(DatabaseSettings(url="sqlite+aiosqlite://"))
    await init_db(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


def log_row(shop, customer, minutes, tag="Gold"):
    return AccessLogEntry(
        shop=shop,
        customer_id=customer,
        display_name=customer.title(),
        customer_tag=tag,
        orders_count="1",
        created_at=T0 + timedelta(minutes=minutes),
    )


def intent_row(shop, state, minutes, tag="Gold"):
    return ProvisioningIntent(
        shop=shop,
        tag=tag,
        title=f"{tag} Off",
        percentage=15,
        state=state.value,
        created_at=T0 + timedelta(minutes=minutes),
    )


# ---------------------------------------------------------------------------
# Access log
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_newest_first_orders_by_write_time_descending():
    async with database() as factory:
        async with session_scope(factory) as session:
            # inserted out of order on purpose
            session.add_all([
                log_row(SHOP, "ada", 5),
                log_row(SHOP, "bob", 1),
                log_row(SHOP, "cy", 9),
                log_row(OTHER, "eve", 20),
            ])

        async with session_scope(factory) as session:
            entries = await AccessLogRepository(session).newest_first(SHOP)

    assert [e["customer_key"] for e in entries] == ["cy", "ada", "bob"]
    assert entries[0]["timestamp"] == T0 + timedelta(minutes=9)
    assert entries[0]["display_name"] == "Cy"
    assert all(e["shop"] == SHOP for e in entries)


@pytest.mark.asyncio
async def test_newest_first_limit_keeps_newest():
    async with database() as factory:
        async with session_scope(factory) as session:
            session.add_all([log_row(SHOP, f"c{i}", i) for i in range(5)])

        async with session_scope(factory) as session:
            entries = await AccessLogRepository(session).newest_first(SHOP, limit=2)

    assert [e["customer_key"] for e in entries] == ["c4", "c3"]


@pytest.mark.asyncio
async def test_access_logger_writes_through_session_scope():
    async with database() as factory:
        logger = AccessLogger(lambda: session_scope(factory))
        outcome = await logger.record_access(SHOP, "gid://shopify/Customer/42", ["Gold", "VIP"], None, "Ada")

        async with session_scope(factory) as session:
            (entry,) = await AccessLogRepository(session).newest_first(SHOP)

    assert outcome.entry_id == entry["id"]
    assert entry["tag_snapshot"] == "Gold,VIP"
    assert entry["orders_count"] == "0"


# ---------------------------------------------------------------------------
# Provisioning intents
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_intent_open_and_advance_are_committed():
    async with database() as factory:
        async with factory() as session:
            intents = IntentRepository(session)
            intent_id = await intents.open(SHOP, "Gold", "Gold Off", 15)
            await intents.advance(
                intent_id, SHOP, ProvisioningState.SEGMENT_CREATED, segment_id="gid://shopify/Segment/1"
            )

        # a fresh session only sees committed state
        async with factory() as session:
            (intent,) = await IntentRepository(session).list_unfinished(SHOP)

    assert intent["id"] == intent_id
    assert intent["state"] == "segment_created"
    assert intent["segment_id"] == "gid://shopify/Segment/1"
    assert intent["tag"] == "Gold"


@pytest.mark.asyncio
async def test_list_unfinished_filters_terminal_states_and_shop():
    async with database() as factory:
        async with session_scope(factory) as session:
            session.add_all([
                intent_row(SHOP, ProvisioningState.ORPHANED, 3, tag="Orphan"),
                intent_row(SHOP, ProvisioningState.STARTED, 1, tag="Started"),
                intent_row(SHOP, ProvisioningState.DISCOUNT_CREATED, 2, tag="Discounted"),
                intent_row(SHOP, ProvisioningState.COMPLETED, 0, tag="Done"),
                intent_row(SHOP, ProvisioningState.COMPENSATED, 0, tag="Undone"),
                intent_row(SHOP, ProvisioningState.FAILED, 0, tag="Failed"),
                intent_row(OTHER, ProvisioningState.STARTED, 0, tag="Elsewhere"),
            ])

        async with session_scope(factory) as session:
            unfinished = await IntentRepository(session).list_unfinished(SHOP)

    assert [i["tag"] for i in unfinished] == ["Started", "Discounted", "Orphan"]


@pytest.mark.asyncio
async def test_list_unfinished_respects_created_before_cutoff():
    async with database() as factory:
        async with session_scope(factory) as session:
            session.add_all([
                intent_row(SHOP, ProvisioningState.SEGMENT_CREATED, 0, tag="Stale"),
                intent_row(SHOP, ProvisioningState.SEGMENT_CREATED, 10, tag="InFlight"),
            ])

        async with session_scope(factory) as session:
            unfinished = await IntentRepository(session).list_unfinished(
                SHOP, created_before=T0 + timedelta(minutes=5)
            )

    assert [i["tag"] for i in unfinished] == ["Stale"]


def test_database_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://vip@db:5432/vip_pricing")
    monkeypatch.setenv("DB_LOG_POOL_SIZE", "4")

    log = DatabaseSettings.from_env("DB_LOG_", pool_size=2, max_overflow=1)

    assert log.url == "postgresql+asyncpg://vip@db:5432/vip_pricing"
    assert (log.pool_size, log.max_overflow) == (4, 1)
    assert not log.is_sqlite
    assert DatabaseSettings(url="sqlite+aiosqlite://").is_sqlite
