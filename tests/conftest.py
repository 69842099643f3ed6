"""Shared fixtures and fakes for sync engine tests."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import callsync.models  # noqa: F401  (registers tables on Base.metadata)
from callsync.database import Base
from callsync.provider.client import ProviderError, RetentionLimitError
from callsync.schemas.calls import CallRecord
from callsync.schemas.tenants import TenantAccount, TenantState

NOW = datetime(2026, 3, 25, 12, 0, tzinfo=timezone.utc)


def make_call(call_id: str, started_at: datetime, duration: float = 30.0, **kwargs) -> CallRecord:
    """CallRecord with sensible defaults."""
    return CallRecord(id=call_id, started_at=started_at, duration_seconds=duration, **kwargs)


def make_tenant(**overrides) -> TenantAccount:
    fields = {
        "tenant_id": "c1",
        "name": "Acme Dental",
        "email": "ops@acme.example",
        "created_at": datetime(2025, 6, 15, 9, 30, tzinfo=timezone.utc),
        "minute_limit": 100.0,
        "used_minutes": 0.0,
        "overages_enabled": False,
        "webhook_url": "https://hooks.example.com/acme",
        "provider_api_key": "vapi_test_key_123",
    }
    fields.update(overrides)
    return TenantAccount(**fields)


class FixedClock:
    """Controllable clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeSleep:
    """Records pacing delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeProvider:
    """
    Scripted stand-in for ProviderClient.list_calls.
    Serves `calls` newest first within (started_after, started_before).
    """

    def __init__(
        self,
        calls: list[CallRecord] = (),
        retention_days: int | None = None,
        clock: FixedClock | None = None,
        fail_on_request: int | None = None,
    ):
        self.calls = sorted(calls, key=lambda c: c.started_at, reverse=True)
        self.retention_days = retention_days
        self.clock = clock or FixedClock()
        self.fail_on_request = fail_on_request
        self.requests: list[dict] = []

    async def list_calls(self, api_key, limit, started_after=None, started_before=None):
        self.requests.append(
            {"limit": limit, "started_after": started_after, "started_before": started_before}
        )
        if self.fail_on_request == len(self.requests):
            raise ProviderError("Provider responded with HTTP 503", 503)
        if self.retention_days is not None:
            oldest = self.clock() - timedelta(days=self.retention_days)
            if started_after is None or started_after < oldest:
                raise RetentionLimitError("Requested window exceeds provider retention", 400)
        window = [
            c
            for c in self.calls
            if (started_after is None or c.started_at > started_after)
            and (started_before is None or c.started_at < started_before)
        ]
        return window[:limit]


class MemoryStore:
    """In-memory TenantStateStore holding deep copies, like a real persistence boundary."""

    def __init__(self, *states: TenantState):
        self.states = {s.tenant.tenant_id: s.model_copy(deep=True) for s in states}
        self.saves = 0

    async def list_tenant_ids(self) -> list[str]:
        return sorted(self.states)

    async def load(self, tenant_id: str) -> TenantState | None:
        state = self.states.get(tenant_id)
        return state.model_copy(deep=True) if state else None

    async def save(self, state: TenantState) -> None:
        self.saves += 1
        state.records_changed = False
        self.states[state.tenant.tenant_id] = state.model_copy(deep=True)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest_asyncio.fixture
async def session_maker():
    """Async session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
