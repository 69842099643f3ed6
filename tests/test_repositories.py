"""Persistence tests against an in-memory SQLite database."""

from datetime import timedelta

import pytest

from callsync.engine import cache
from callsync.engine.notifier import build_event
from callsync.models import Tenant
from callsync.schemas.calls import EndReason
from callsync.schemas.tenants import NotificationKind
from callsync.storage.repositories import (
    SqlTenantStateStore,
    StaleStateError,
    get_tenant_by_email,
    read_document,
    write_document,
)
from conftest import NOW, make_call, make_tenant


async def add_tenant(session_maker, **overrides):
    account = make_tenant(**overrides)
    async with session_maker() as db, db.begin():
        db.add(Tenant(**account.model_dump(), version=0))
    return account


@pytest.mark.asyncio
async def test_save_and_load_round_trip(session_maker):
    await add_tenant(session_maker)
    store = SqlTenantStateStore(session_maker)

    state = await store.load("c1")
    assert state.version == 0
    assert state.cache.records == ()

    fresh = [
        make_call("a", NOW - timedelta(hours=2), duration=90, end_reason=EndReason.SILENCE_TIMEOUT),
        make_call("b", NOW - timedelta(hours=1), duration=30),
    ]
    state.cache = cache.merge(state.cache, fresh, NOW, tenant_id="c1")
    state.records_changed = True
    state.tenant.used_minutes = 2.0
    state.notifications.insert(0, build_event("c1", "Hello", "world", NotificationKind.INFO, NOW))
    await store.save(state)
    assert state.version == 1

    loaded = await store.load("c1")
    assert loaded.version == 1
    assert loaded.tenant.used_minutes == 2.0
    assert loaded.cache.last_sync_watermark == NOW
    assert [r.id for r in loaded.cache.records] == ["b", "a"]
    assert loaded.cache.records[1].end_reason is EndReason.SILENCE_TIMEOUT
    assert loaded.cache.records[0].started_at.tzinfo is not None
    assert loaded.notifications[0].title == "Hello"
    assert await store.list_tenant_ids() == ["c1"]


@pytest.mark.asyncio
async def test_unchanged_records_are_kept(session_maker):
    await add_tenant(session_maker)
    store = SqlTenantStateStore(session_maker)

    state = await store.load("c1")
    state.cache = cache.merge(state.cache, [make_call("a", NOW - timedelta(hours=1))], NOW, tenant_id="c1")
    state.records_changed = True
    await store.save(state)

    again = await store.load("c1")
    again.tenant.used_minutes = 0.5
    await store.save(again)

    final = await store.load("c1")
    assert [r.id for r in final.cache.records] == ["a"]
    assert final.version == 2


@pytest.mark.asyncio
async def test_stale_save_is_rejected(session_maker):
    await add_tenant(session_maker)
    store = SqlTenantStateStore(session_maker)

    first = await store.load("c1")
    second = await store.load("c1")
    first.tenant.used_minutes = 4.0
    await store.save(first)

    second.tenant.used_minutes = 9.0
    with pytest.raises(StaleStateError):
        await store.save(second)

    assert (await store.load("c1")).tenant.used_minutes == 4.0


@pytest.mark.asyncio
async def test_email_lookup_is_case_insensitive(session_maker):
    await add_tenant(session_maker, email="Ops@Acme.example")

    async with session_maker() as db:
        row = await get_tenant_by_email(db, "ops@acme.example")
        missing = await get_tenant_by_email(db, "nobody@acme.example")

    assert row.tenant_id == "c1"
    assert missing is None


@pytest.mark.asyncio
async def test_document_write_then_read(session_maker):
    document = {
        "clients": [
            {
                "tenant_id": "c9",
                "name": "Gamma Legal",
                "email": "desk@gamma.example",
                "created_at": "2025-02-01T00:00:00Z",
                "minute_limit": 500,
                "used_minutes": 12.5,
                "overages_enabled": True,
                "webhook_url": None,
                "provider_api_key": "vapi_gamma_key",
                "notifications": [
                    {
                        "id": "evt_1",
                        "title": "Welcome",
                        "message": "Account ready",
                        "kind": "info",
                        "created_at": "2026-03-01T10:00:00Z",
                        "read": True,
                    }
                ],
            }
        ],
        "callCache": {
            "c9": {
                "lastSync": "2026-03-20T08:00:00+00:00",
                "calls": [
                    {"id": "x1", "started_at": "2026-03-19T09:00:00Z", "duration_seconds": 45},
                    {"id": "x2", "started_at": "2026-03-19T11:00:00Z", "duration_seconds": 15},
                ],
            }
        },
    }

    async with session_maker() as db, db.begin():
        assert await write_document(db, document) == 1

    async with session_maker() as db:
        snapshot = await read_document(db)

    client = snapshot["clients"][0]
    assert client["tenant_id"] == "c9"
    assert client["overages_enabled"] is True
    assert client["notifications"][0]["id"] == "evt_1"
    assert client["notifications"][0]["read"] is True
    cached = snapshot["callCache"]["c9"]
    assert cached["lastSync"] == "2026-03-20T08:00:00+00:00"
    assert [c["id"] for c in cached["calls"]] == ["x2", "x1"]
    assert cached["calls"][0]["tenant_id"] == "c9"
