"""HTTP surface tests (lifespan not started; engine wired by hand)."""

import httpx
import pytest
import pytest_asyncio

from callsync.config import settings
from callsync.database import get_db
from callsync.engine.orchestrator import SyncOrchestrator
from callsync.engine.paginator import BatchPaginator
from callsync.engine.webhooks import WebhookDispatcher
from callsync.main import app
from callsync.models import Tenant
from callsync.schemas.tenants import TenantState
from conftest import NOW, FakeProvider, MemoryStore, make_call, make_tenant

HEADERS = {"x-api-key": "test-master-key"}


@pytest.fixture
def store():
    return MemoryStore(TenantState(tenant=make_tenant()))


@pytest_asyncio.fixture
async def client(monkeypatch, store, clock, fake_sleep, session_maker):
    monkeypatch.setattr(settings, "master_api_key", "test-master-key")
    provider = FakeProvider([make_call("call_1", NOW.replace(hour=9), duration=120)], clock=clock)
    app.state.orchestrator = SyncOrchestrator(
        store,
        BatchPaginator(provider, sleep=fake_sleep, clock=clock),
        WebhookDispatcher(http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))),
        clock=clock,
    )

    async def override_get_db():
        async with session_maker() as db:
            yield db

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_requires_master_key(client):
    assert (await client.post("/v1/sync")).status_code == 401
    assert (await client.post("/v1/sync", headers={"x-api-key": "wrong"})).status_code == 401


@pytest.mark.asyncio
async def test_sync_tenant_endpoint(client, store):
    response = await client.post("/v1/tenants/c1/sync", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["tenant_id"] == "c1"
    assert body["state"] == "idle"
    assert body["fetched"] == 1
    assert store.states["c1"].tenant.used_minutes == 2.0


@pytest.mark.asyncio
async def test_unknown_tenant_is_404(client):
    response = await client.post("/v1/tenants/nope/sync", headers=HEADERS)
    assert response.status_code == 404

    response = await client.get("/v1/tenants/nope/calls", headers=HEADERS)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_calls_endpoints(client):
    cached = await client.get("/v1/tenants/c1/calls", params={"refresh": "false"}, headers=HEADERS)
    assert cached.json() == []

    refreshed = await client.get("/v1/tenants/c1/calls", headers=HEADERS)
    assert [c["id"] for c in refreshed.json()] == ["call_1"]

    everything = await client.get("/v1/calls", headers=HEADERS)
    assert [c["tenant_id"] for c in everything.json()] == ["c1"]

    stats = await client.get("/v1/tenants/c1/stats", headers=HEADERS)
    assert stats.status_code == 200
    assert "reason_counts" in stats.json()


@pytest.mark.asyncio
async def test_status_lookup_by_email(client, session_maker):
    account = make_tenant(minute_limit=200, used_minutes=170, email="Ops@Acme.example")
    async with session_maker() as db, db.begin():
        db.add(Tenant(**account.model_dump(), version=0))

    response = await client.get("/v1/status", params={"email": "ops@acme.example"}, headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["usage_percentage"] == 85.0
    assert body["is_near_capacity"] is True

    missing = await client.get("/v1/status", params={"email": "who@nowhere.example"}, headers=HEADERS)
    assert missing.status_code == 404
